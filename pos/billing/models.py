from datetime import datetime
from decimal import Decimal
from pos import db


class InvoiceSequence(db.Model):
    """
    One row per calendar year holding the last-used invoice number.

    COUNT(sales) is not safe under concurrent checkouts: two transactions
    can read the same count and both try to write the same number.
    Locking this row with SELECT … FOR UPDATE serialises them, and the
    counter only advances when the sale commits, so a rolled-back sale
    leaves no gap in the series.
    """
    __tablename__ = 'invoice_sequences'

    year     = db.Column(db.Integer, primary_key=True)
    last_seq = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<InvoiceSequence year={self.year} last_seq={self.last_seq}>"


class Sale(db.Model):
    """
    One finalised sale, recorded from a cart snapshot at checkout.
    Amounts are the snapshot's totals; nothing is recomputed later.
    """
    __tablename__ = 'sales'

    id                  = db.Column(db.Integer, primary_key=True)
    invoice_number      = db.Column(db.String(20), unique=True, nullable=False, index=True)
    cashier_id          = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    customer_id         = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=True, index=True)
    subtotal            = db.Column(db.Numeric(14, 2), nullable=False)   # Σ price × qty
    total_line_discount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    cart_discount       = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax_rate            = db.Column(db.Numeric(5, 2),  nullable=False)
    tax_amount          = db.Column(db.Numeric(14, 2), nullable=False)
    total_amount        = db.Column(db.Numeric(14, 2), nullable=False)
    payment_method      = db.Column(db.String(20), nullable=False, default='cash')
    wholesale           = db.Column(db.Boolean, nullable=False, default=False)
    notes               = db.Column(db.Text, nullable=True)
    created_at          = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # ── Relationships ─────────────────────────────────────────────
    cashier  = db.relationship('User', backref='sales', lazy='select')
    customer = db.relationship('Customer', backref='sales', lazy='select')
    items    = db.relationship('SaleItem', backref='sale', lazy='select',
                               cascade='all, delete-orphan')
    payments = db.relationship('SalePayment', backref='sale', lazy='select',
                               cascade='all, delete-orphan')

    # ── Computed helpers ──────────────────────────────────────────
    @property
    def discount_amount(self) -> Decimal:
        return Decimal(str(self.total_line_discount)) + Decimal(str(self.cart_discount))

    @property
    def amount_paid(self) -> Decimal:
        return sum((Decimal(str(p.amount)) for p in self.payments), Decimal('0'))

    @property
    def change_due(self) -> Decimal:
        return max(Decimal('0'), self.amount_paid - Decimal(str(self.total_amount)))

    def __repr__(self):
        return f"<Sale {self.invoice_number!r} total={self.total_amount}>"


class SaleItem(db.Model):
    """
    One line of a Sale. Price, discount and name are snapshots taken at
    checkout, so later catalog edits don't alter historical receipts.
    """
    __tablename__ = 'sale_items'

    id            = db.Column(db.Integer, primary_key=True)
    sale_id       = db.Column(db.Integer, db.ForeignKey('sales.id'), nullable=False)
    product_id    = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False)
    product_name  = db.Column(db.String(200), nullable=False)
    variant       = db.Column(db.String(100), nullable=True)
    quantity      = db.Column(db.Integer, nullable=False)
    unit_price    = db.Column(db.Numeric(14, 2), nullable=False)
    line_discount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    subtotal      = db.Column(db.Numeric(14, 2), nullable=False)   # qty × price − discount

    product = db.relationship('Product', lazy='select')

    __table_args__ = (
        db.CheckConstraint('quantity > 0', name='check_sale_item_qty_positive'),
    )

    def __repr__(self):
        return f"<SaleItem sale={self.sale_id} product={self.product_id} qty={self.quantity}>"


class SalePayment(db.Model):
    """One tender used to pay a Sale."""
    __tablename__ = 'sale_payments'

    id        = db.Column(db.Integer, primary_key=True)
    sale_id   = db.Column(db.Integer, db.ForeignKey('sales.id'), nullable=False)
    method    = db.Column(db.String(20), nullable=False)
    amount    = db.Column(db.Numeric(14, 2), nullable=False)
    reference = db.Column(db.String(100), nullable=True)

    def __repr__(self):
        return f"<SalePayment sale={self.sale_id} {self.method} {self.amount}>"
