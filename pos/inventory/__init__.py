from flask import Blueprint

inventory = Blueprint('inventory', __name__)

from pos.inventory import routes  # noqa: F401, E402
from pos.inventory import models  # noqa: F401, E402  — registers Product/InventoryLog with SQLAlchemy
