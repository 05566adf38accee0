from flask import Blueprint

main = Blueprint('main', __name__)

from pos.main import routes  # noqa: F401, E402
