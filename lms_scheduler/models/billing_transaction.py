from datetime import datetime
from lms_scheduler import db

class BillingTransaction(db.Model):
    """One student's charge for one class session"""
    __tablename__ = 'billing_transactions'

    STATUSES = ('unpaid', 'paid', 'democlass', 'canceled')
    MUTABLE_STATUSES = ('unpaid', 'democlass')
    PAYMENT_METHODS = ('cash', 'card', 'bank_transfer', 'wallet', 'external', 'credit')

    id = db.Column(db.Integer, primary_key=True)

    # Class and participant information
    class_id = db.Column(db.Integer, db.ForeignKey('classes.id'), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    tutor_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey('users.id'), index=True)
    subject = db.Column(db.String(100))

    # Terms
    status = db.Column(db.String(20), nullable=False, default='unpaid', index=True)  # unpaid, paid, democlass, canceled
    amount = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(3), nullable=False, default='USD')

    # Scheduling window
    session_date = db.Column(db.Date, nullable=False, index=True)
    scheduled_start = db.Column(db.DateTime, nullable=False)
    scheduled_end = db.Column(db.DateTime, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)

    # Payment information
    paid_at = db.Column(db.DateTime)
    payment_method = db.Column(db.String(20))
    payment_reference = db.Column(db.String(100))

    notes = db.Column(db.Text, default='')

    # Audit trail
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    updated_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    class_item = db.relationship('Class', backref='billing_transactions', lazy=True)

    __table_args__ = (
        db.Index('ix_billing_class_student_date', 'class_id', 'student_id', 'session_date'),
    )

    @property
    def is_mutable(self):
        """Paid and canceled rows are never touched by reconciliation"""
        return self.status in self.MUTABLE_STATUSES

    def apply_terms(self, terms, updated_by=None):
        """Bring status, amount and currency in line with billing terms.

        Returns True when anything changed.
        """
        changed = False
        for field, value in (('status', terms.status),
                             ('amount', terms.amount),
                             ('currency', terms.currency)):
            if getattr(self, field) != value:
                setattr(self, field, value)
                changed = True
        if changed:
            self.updated_by = updated_by
        return changed

    def cancel(self, note, updated_by=None):
        self.status = 'canceled'
        self.notes = note
        self.updated_by = updated_by

    def mark_as_paid(self, paid_at, payment_method=None, payment_reference=None, updated_by=None):
        self.status = 'paid'
        self.paid_at = paid_at
        self.payment_method = payment_method
        self.payment_reference = payment_reference
        self.updated_by = updated_by

    @staticmethod
    def get_billing_report(class_id=None, student_id=None, tutor_id=None, parent_id=None,
                           date_from=None, date_to=None, center_id=None):
        """Totals by status for the matching transactions"""
        query = BillingTransaction.query

        if class_id:
            query = query.filter_by(class_id=class_id)
        if student_id:
            query = query.filter_by(student_id=student_id)
        if tutor_id:
            query = query.filter_by(tutor_id=tutor_id)
        if parent_id:
            query = query.filter_by(parent_id=parent_id)
        if date_from:
            query = query.filter(BillingTransaction.session_date >= date_from)
        if date_to:
            query = query.filter(BillingTransaction.session_date <= date_to)
        if center_id:
            from lms_scheduler.models.class_model import Class
            query = query.join(Class, Class.id == BillingTransaction.class_id).filter(Class.center_id == center_id)

        records = query.all()

        report = {
            'total_transactions': len(records),
            'total_amount': 0.0,
            'paid_amount': 0.0,
            'unpaid_amount': 0.0,
            'democlass': 0,
            'canceled': 0,
            'by_currency': {}
        }

        for record in records:
            if record.status == 'canceled':
                report['canceled'] += 1
                continue
            report['total_amount'] += record.amount
            if record.status == 'paid':
                report['paid_amount'] += record.amount
            elif record.status == 'unpaid':
                report['unpaid_amount'] += record.amount
            elif record.status == 'democlass':
                report['democlass'] += 1
            report['by_currency'][record.currency] = report['by_currency'].get(record.currency, 0.0) + record.amount

        return report

    def to_dict(self):
        return {
            'id': self.id,
            'class_id': self.class_id,
            'student_id': self.student_id,
            'tutor_id': self.tutor_id,
            'parent_id': self.parent_id,
            'subject': self.subject,
            'status': self.status,
            'amount': self.amount,
            'currency': self.currency,
            'session_date': self.session_date.isoformat(),
            'scheduled_start': self.scheduled_start.isoformat(),
            'scheduled_end': self.scheduled_end.isoformat(),
            'duration_minutes': self.duration_minutes,
            'paid_at': self.paid_at.isoformat() if self.paid_at else None,
            'payment_method': self.payment_method,
            'payment_reference': self.payment_reference,
            'notes': self.notes
        }

    def __repr__(self):
        return f'<BillingTransaction Class:{self.class_id} Student:{self.student_id} {self.session_date} {self.status}>'
