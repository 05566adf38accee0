from decimal import Decimal
from datetime import datetime
from pos import db

# ── Central threshold — change here, applies everywhere ──────────
LOW_STOCK_THRESHOLD = 5


class Product(db.Model):
    """A sellable catalog entry (accessory, part, device)."""
    __tablename__ = 'products'

    id          = db.Column(db.Integer, primary_key=True)
    name        = db.Column(db.String(200), nullable=False, index=True)
    sku         = db.Column(db.String(100), unique=True, nullable=False, index=True)
    price       = db.Column(db.Numeric(14, 2), nullable=False)
    wholesale_price = db.Column(db.Numeric(14, 2), nullable=True)
    stock       = db.Column(db.Integer, nullable=False, default=0)
    is_active   = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at  = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at  = db.Column(
        db.DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow
    )

    __table_args__ = (
        db.CheckConstraint('stock >= 0', name='check_stock_non_negative'),
        db.CheckConstraint('price >= 0', name='check_price_non_negative'),
        db.CheckConstraint('wholesale_price >= 0', name='check_wholesale_price_non_negative'),
    )

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= LOW_STOCK_THRESHOLD

    def snapshot(self, variant=None):
        """Copy the fields a cart line needs, as of now."""
        from pos.billing.cart import ProductSnapshot

        return ProductSnapshot(
            product_id=self.id,
            name=self.name,
            sku=self.sku,
            unit_price=Decimal(str(self.price)),
            available_stock=self.stock,
            variant=variant,
            wholesale_price=(None if self.wholesale_price is None
                             else Decimal(str(self.wholesale_price))),
        )

    def to_dict(self) -> dict:
        return {
            'id':           self.id,
            'name':         self.name,
            'sku':          self.sku,
            'price':        str(self.price),
            'wholesale_price': None if self.wholesale_price is None else str(self.wholesale_price),
            'stock':        self.stock,
            'is_active':    self.is_active,
            'is_low_stock': self.is_low_stock,
        }

    def __repr__(self):
        return f"<Product {self.sku!r} {self.name!r}>"


class InventoryLog(db.Model):
    """
    Audit trail for stock changes.
    Tracks old vs new stock, who changed it, and why.
    """
    __tablename__ = 'inventory_logs'

    id          = db.Column(db.Integer, primary_key=True)
    product_id  = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False)
    old_stock   = db.Column(db.Integer, nullable=False)
    new_stock   = db.Column(db.Integer, nullable=False)
    changed_by  = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    reason      = db.Column(db.String(255), nullable=False)
    timestamp   = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    product = db.relationship('Product', backref=db.backref('logs', lazy='select'))
    user    = db.relationship('User', lazy='select')

    def __repr__(self):
        return f"<Log Product:{self.product_id} {self.old_stock}->{self.new_stock} ({self.reason})>"
