import enum
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash
from pos import db


class RoleEnum(enum.Enum):
    admin   = "admin"      # catalog and stock changes
    cashier = "cashier"    # cart and checkout only


class User(db.Model):
    """Someone who can open a cart at the register."""
    __tablename__ = 'users'

    id            = db.Column(db.Integer, primary_key=True)
    name          = db.Column(db.String(120), nullable=False)
    username      = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    role          = db.Column(db.Enum(RoleEnum), nullable=False, default=RoleEnum.cashier)
    is_active     = db.Column(db.Boolean, nullable=False, default=True)
    last_login_at = db.Column(db.DateTime, nullable=True)
    created_at    = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def set_password(self, plain_password: str) -> None:
        self.password_hash = generate_password_hash(plain_password)

    def authenticate(self, plain_password: str) -> bool:
        """A disabled account never authenticates, whatever the password."""
        return self.is_active and check_password_hash(self.password_hash, plain_password)

    @property
    def is_admin(self) -> bool:
        return self.role == RoleEnum.admin

    def to_dict(self) -> dict:
        return {'id': self.id, 'name': self.name, 'role': self.role.value}

    def __repr__(self) -> str:
        return f"<User {self.username!r} role={self.role.value!r}>"
