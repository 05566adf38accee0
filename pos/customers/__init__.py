from flask import Blueprint

customers = Blueprint('customers', __name__)

from pos.customers import routes  # noqa: F401, E402
from pos.customers import models  # noqa: F401, E402  — registers Customer with SQLAlchemy
