# services/repository.py
"""
Persistence gateway for consultation requests and ebook subscribers.

Every operation runs through SQLAlchemy bound parameters. Database failures
never escape: they are rolled back, logged, and reported through a
PersistenceResult so that the caller can still send its emails.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, date, time, timedelta
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from core.database_models import db, ConsultationRequest, EbookSubscriber
from core.logging_setup import SiteLogger, get_site_logger

DEFAULT_LIST_LIMIT = 100

# Shown to visitors; the driver message only goes to the error log
SAVE_FAILED_MESSAGE = "L'enregistrement de votre demande a échoué"


@dataclass
class PersistenceResult:
    """Outcome of a write"""
    success: bool
    message: str = ''
    id: Optional[int] = None
    was_update: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SubscriberStats:
    total: int = 0
    today: int = 0
    mailing_list_count: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class SubmissionRepository:
    """Reads and writes the two submission tables on the Flask-SQLAlchemy session"""

    def __init__(self, session=None, logger: Optional[SiteLogger] = None):
        self.session = session if session is not None else db.session
        self.logger = logger or get_site_logger()

    def _fail(self, action: str, error: SQLAlchemyError, **context) -> None:
        self.session.rollback()
        self.logger.error(f"Erreur de base de données ({action})", context={
            'message': str(error),
            **context,
        })

    def ensure_schema(self) -> PersistenceResult:
        """Create both tables when missing; safe to run repeatedly"""
        try:
            db.metadata.create_all(bind=self.session.get_bind())
        except SQLAlchemyError as e:
            self._fail('schema', e)
            return PersistenceResult(False, 'Création du schéma impossible')
        return PersistenceResult(True, 'Schéma prêt')

    def insert_consultation(self, record: Mapping[str, Any], remote_addr: Optional[str] = None) -> PersistenceResult:
        request_row = ConsultationRequest(
            name=record['name'],
            email=record['email'],
            phone=record.get('phone') or None,
            instagram=record.get('instagram') or None,
            ip_address=remote_addr,
        )
        try:
            self.session.add(request_row)
            self.session.commit()
        except SQLAlchemyError as e:
            self._fail('insert_consultation', e, email=record.get('email'))
            return PersistenceResult(False, SAVE_FAILED_MESSAGE)

        self.logger.info('Demande de bilan enregistrée', context={'id': request_row.id})
        return PersistenceResult(True, f"Demande enregistrée avec l'ID: {request_row.id}", id=request_row.id)

    def upsert_subscriber(self, record: Mapping[str, Any], remote_addr: Optional[str] = None) -> PersistenceResult:
        """
        Insert a subscriber, or refresh name, IP and download date when the
        email is already known.
        """
        consent = bool(record.get('consent'))
        try:
            existing = self.session.execute(
                select(EbookSubscriber).where(EbookSubscriber.email == record['email'])
            ).scalar_one_or_none()

            if existing is None:
                subscriber = EbookSubscriber(
                    name=record['name'],
                    email=record['email'],
                    ip_address=remote_addr,
                    consent=consent,
                    mail_list=consent,
                )
                self.session.add(subscriber)
                self.session.commit()
                result = PersistenceResult(True, f"Abonné enregistré avec l'ID: {subscriber.id}", id=subscriber.id)
            else:
                existing.name = record['name']
                existing.ip_address = remote_addr
                existing.download_date = datetime.now()
                self.session.commit()
                result = PersistenceResult(True, 'Abonné existant mis à jour', id=existing.id, was_update=True)
        except SQLAlchemyError as e:
            self._fail('upsert_subscriber', e, email=record.get('email'))
            return PersistenceResult(False, SAVE_FAILED_MESSAGE)

        self.logger.info('Abonné ebook enregistré', context={'id': result.id, 'updated': result.was_update})
        return result

    def update_status(self, request_id: int, status: str, notes: Optional[str] = None) -> bool:
        """Administrative status change; notes are only touched when given"""
        try:
            request_row = self.session.get(ConsultationRequest, request_id)
            if request_row is None:
                return False
            request_row.status = status
            if notes is not None:
                request_row.notes = notes
            self.session.commit()
        except SQLAlchemyError as e:
            self._fail('update_status', e, id=request_id)
            return False
        return True

    def list_consultations(self, status: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> List[Dict[str, Any]]:
        query = select(ConsultationRequest)
        if status:
            query = query.where(ConsultationRequest.status == status)
        query = query.order_by(ConsultationRequest.submission_date.desc(), ConsultationRequest.id.desc()).limit(limit)
        try:
            rows = self.session.execute(query).scalars().all()
        except SQLAlchemyError as e:
            self._fail('list_consultations', e, status=status)
            return []
        return [row.to_dict() for row in rows]

    def subscriber_stats(self) -> Optional[SubscriberStats]:
        """Download counters for the admin notification; None when unavailable"""
        start_of_day = datetime.combine(date.today(), time.min)
        count = func.count(EbookSubscriber.id)
        try:
            total = self.session.execute(select(count)).scalar_one()
            today = self.session.execute(
                select(count).where(
                    EbookSubscriber.download_date >= start_of_day,
                    EbookSubscriber.download_date < start_of_day + timedelta(days=1),
                )
            ).scalar_one()
            mailing_list = self.session.execute(
                select(count).where(EbookSubscriber.mail_list.is_(True))
            ).scalar_one()
        except SQLAlchemyError as e:
            self._fail('subscriber_stats', e)
            return None
        return SubscriberStats(total=total, today=today, mailing_list_count=mailing_list)
