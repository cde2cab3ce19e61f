from datetime import datetime

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean

db = SQLAlchemy()


class ConsultationRequest(db.Model):
    """A "bilan" (assessment) request sent from the booking form"""
    __tablename__ = 'enorehab_contacts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), nullable=False)
    phone = Column(String(20))
    instagram = Column(String(100))
    submission_date = Column(DateTime, default=datetime.now)
    ip_address = Column(String(45))
    status = Column(String(20), default='pending')  # free text, e.g. 'pending', 'contacted', 'done'
    notes = Column(Text)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'instagram': self.instagram,
            'submission_date': self.submission_date.isoformat() if self.submission_date else None,
            'ip_address': self.ip_address,
            'status': self.status,
            'notes': self.notes,
        }


class EbookSubscriber(db.Model):
    """One row per email address that downloaded the ebook"""
    __tablename__ = 'enorehab_ebook_subscribers'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), nullable=False, unique=True)
    download_date = Column(DateTime, default=datetime.now)  # refreshed on every repeat download
    ip_address = Column(String(45))
    consent = Column(Boolean, default=True)
    mail_list = Column(Boolean, default=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'download_date': self.download_date.isoformat() if self.download_date else None,
            'ip_address': self.ip_address,
            'consent': self.consent,
            'mail_list': self.mail_list,
        }
