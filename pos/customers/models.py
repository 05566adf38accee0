from datetime import datetime
from decimal import Decimal
from pos import db


class Customer(db.Model):
    """A buyer the cashier can attach to a sale, with a standing discount."""
    __tablename__ = 'customers'

    id               = db.Column(db.Integer, primary_key=True)
    name             = db.Column(db.String(100), nullable=False)
    phone            = db.Column(db.String(20), unique=True, nullable=False, index=True)
    email            = db.Column(db.String(120), nullable=True)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    created_at       = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('discount_percent >= 0 AND discount_percent <= 100',
                           name='check_customer_discount_range'),
    )

    @property
    def discount(self) -> Decimal:
        return Decimal(str(self.discount_percent or 0))

    def to_dict(self) -> dict:
        return {
            'id':               self.id,
            'name':             self.name,
            'phone':            self.phone,
            'email':            self.email,
            'discount_percent': str(self.discount),
        }

    def __repr__(self):
        return f"<Customer {self.name} ({self.phone}) {self.discount}%>"
