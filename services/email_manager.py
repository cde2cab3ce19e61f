# services/email_manager.py
"""
Notification gateway: templated emails for both forms.

Two dispatch modes, chosen per request:
- local: the rendered message is written to a timestamped file under the mail
  log directory and the send always counts as delivered
- smtp: the message goes out over an authenticated TLS connection and the
  result reflects the transmission

No failure leaves this module; callers only see True/False.
"""

import hashlib
import mimetypes
import smtplib
import ssl
from dataclasses import dataclass, field
from datetime import datetime
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from config.settings import NON_INTERACTIVE, RequestContext
from core.logging_setup import SiteLogger, get_site_logger
from core.template_engine import EmailTemplateEngine, TemplateNotFoundError, html_to_text
from services.repository import SubscriberStats

NOT_PROVIDED = 'Non renseigné'

TEMPLATE_CLIENT_BILAN = 'client_bilan_confirmation.html'
TEMPLATE_ADMIN_BILAN = 'admin_bilan_notification.html'
TEMPLATE_EBOOK = 'ebook_template.html'
TEMPLATE_ADMIN_EBOOK = 'admin_ebook_notification.html'


@dataclass
class Address:
    email: str
    name: str = ''

    @classmethod
    def from_pair(cls, pair) -> 'Address':
        name, email = pair
        return cls(email=email, name=name)

    def formatted(self) -> str:
        return formataddr((self.name, self.email))


@dataclass
class Attachment:
    path: Path
    name: Optional[str] = None
    mime_type: Optional[str] = None

    @property
    def filename(self) -> str:
        return self.name or Path(self.path).name


@dataclass
class MailOptions:
    sender: Optional[Address] = None
    to_name: str = ''
    reply_to: Optional[Address] = None
    cc: List[Address] = field(default_factory=list)
    bcc: List[Address] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)
    alt_text: Optional[str] = None
    force_smtp: bool = False


@dataclass
class SmtpSettings:
    host: str
    port: int = 465
    username: str = ''
    password: str = ''
    timeout: float = 30
    verify_certs: bool = True

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'SmtpSettings':
        return cls(
            host=config['SMTP_HOST'],
            port=int(config['SMTP_PORT']),
            username=config.get('SMTP_USERNAME') or '',
            password=config.get('SMTP_PASSWORD') or '',
            timeout=config.get('SMTP_TIMEOUT', 30),
            verify_certs=config.get('SMTP_VERIFY_CERTS', True),
        )


class EmailManager:
    """Builds, renders and dispatches the site's emails"""

    def __init__(self,
                 smtp: SmtpSettings,
                 template_engine: EmailTemplateEngine,
                 mail_log_dir: Path,
                 default_sender: Address,
                 practitioner: Address,
                 practitioner_reply_to: Address,
                 admin: Address,
                 ebook: Optional[Attachment] = None,
                 local_mode: bool = False,
                 remote_addr: str = NON_INTERACTIVE,
                 logger: Optional[SiteLogger] = None):
        self.smtp = smtp
        self.template_engine = template_engine
        self.mail_log_dir = Path(mail_log_dir)
        self.default_sender = default_sender
        self.practitioner = practitioner
        self.practitioner_reply_to = practitioner_reply_to
        self.admin = admin
        self.ebook = ebook
        self.local_mode = local_mode
        self.remote_addr = remote_addr
        self.logger = logger or get_site_logger()

    @classmethod
    def from_config(cls, config: Mapping[str, Any], context: RequestContext,
                    logger: Optional[SiteLogger] = None) -> 'EmailManager':
        mail_log_dir = config.get('MAIL_LOG_DIR') or Path(config['LOG_DIR']) / 'emails'
        return cls(
            smtp=SmtpSettings.from_config(config),
            template_engine=EmailTemplateEngine(config['EMAIL_TEMPLATE_DIRS']),
            mail_log_dir=mail_log_dir,
            default_sender=Address.from_pair(config['MAIL_DEFAULT_SENDER']),
            practitioner=Address.from_pair(config['MAIL_PRACTITIONER']),
            practitioner_reply_to=Address.from_pair(config['MAIL_PRACTITIONER_REPLY_TO']),
            admin=Address.from_pair(config['MAIL_ADMIN']),
            ebook=Attachment(Path(config['EBOOK_PATH']), config.get('EBOOK_FILENAME'), 'application/pdf'),
            local_mode=context.local_mode,
            remote_addr=context.remote_addr,
            logger=logger,
        )

    # ------------------------------------------------------------------ core

    def load_template(self, name: str, variables: Mapping[str, Any]) -> str:
        """Render a template; raises TemplateNotFoundError"""
        return self.template_engine.render(name, variables)

    def send(self, to: str, subject: str, html: str, alt_text: Optional[str] = None,
             options: Optional[MailOptions] = None) -> bool:
        options = options or MailOptions()

        if self.local_mode and not options.force_smtp:
            return self._save_local(to, subject, html, alt_text, options)

        try:
            message = self._build_message(to, subject, html, alt_text or html_to_text(html), options)
            recipients = [to] + [a.email for a in options.cc] + [a.email for a in options.bcc]
            self._transmit(message, recipients)
        except (smtplib.SMTPException, OSError, ValueError) as e:
            self.logger.error("Erreur d'envoi d'email", context={
                'message': str(e),
                'error_type': type(e).__name__,
                'to': to,
                'subject': subject,
            })
            return False

        self.logger.info('Email envoyé', context={'to': to, 'subject': subject})
        return True

    def send_template(self, to: str, subject: str, template_name: str,
                      variables: Mapping[str, Any], options: Optional[MailOptions] = None) -> bool:
        options = options or MailOptions()
        try:
            html = self.load_template(template_name, variables)
        except (TemplateNotFoundError, OSError) as e:
            self.logger.error('Erreur de template email', context={
                'message': str(e),
                'template': template_name,
            })
            return False
        return self.send(to, subject, html, options.alt_text, options)

    def _build_message(self, to: str, subject: str, html: str, alt_text: str,
                       options: MailOptions) -> MIMEMultipart:
        sender = options.sender or self.default_sender

        body = MIMEMultipart('alternative')
        body.attach(MIMEText(alt_text, 'plain', 'utf-8'))
        body.attach(MIMEText(html, 'html', 'utf-8'))

        if options.attachments:
            msg = MIMEMultipart('mixed')
            msg.attach(body)
            for attachment in options.attachments:
                msg.attach(self._attachment_part(attachment))
        else:
            msg = body

        msg['Subject'] = subject
        msg['From'] = sender.formatted()
        msg['To'] = formataddr((options.to_name, to))
        msg['Date'] = formatdate(localtime=True)
        msg['Message-ID'] = make_msgid(domain=sender.email.rpartition('@')[2] or None)
        if options.reply_to:
            msg['Reply-To'] = options.reply_to.formatted()
        if options.cc:
            msg['Cc'] = ', '.join(a.formatted() for a in options.cc)
        return msg

    @staticmethod
    def _attachment_part(attachment: Attachment) -> MIMEBase:
        # FileNotFoundError here fails the whole send
        payload = Path(attachment.path).read_bytes()
        mime_type = attachment.mime_type or mimetypes.guess_type(attachment.filename)[0] or 'application/octet-stream'
        maintype, subtype = mime_type.split('/', 1)

        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        part.add_header('Content-Disposition', 'attachment', filename=attachment.filename)
        return part

    def _transmit(self, message: MIMEMultipart, recipients: List[str]) -> None:
        context = ssl.create_default_context()
        if not self.smtp.verify_certs:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE

        if self.smtp.port == 465:
            server = smtplib.SMTP_SSL(self.smtp.host, self.smtp.port, timeout=self.smtp.timeout, context=context)
        else:
            server = smtplib.SMTP(self.smtp.host, self.smtp.port, timeout=self.smtp.timeout)

        with server:
            if self.smtp.port != 465:
                server.starttls(context=context)
            if self.smtp.username and self.smtp.password:
                server.login(self.smtp.username, self.smtp.password)
            server.send_message(message, to_addrs=recipients)

    def _save_local(self, to: str, subject: str, html: str, alt_text: Optional[str],
                    options: MailOptions) -> bool:
        now = datetime.now()
        digest = hashlib.md5(f"{to}{subject}".encode('utf-8')).hexdigest()[:8]
        path = self.mail_log_dir / f"{now:%Y-%m-%d_%H-%M-%S-%f}_{digest}.html"
        sender = options.sender or self.default_sender

        lines = [
            f"Date: {now:%Y-%m-%d %H:%M:%S}",
            f"To: {to}",
            f"Subject: {subject}",
            f"From: {sender.name} <{sender.email}>",
            "",
        ]
        if options.attachments:
            lines.append("Attachments:")
            lines.extend(f"- {attachment.filename}" for attachment in options.attachments)
            lines.append("")
        lines.extend(["=== HTML CONTENT ===", html, ""])
        if alt_text:
            lines.extend(["=== TEXT CONTENT ===", alt_text])

        try:
            self.mail_log_dir.mkdir(parents=True, exist_ok=True)
            path.write_text('\n'.join(lines) + '\n', encoding='utf-8')
        except OSError as e:
            # Local mode reports success regardless
            self.logger.error("Impossible d'écrire l'email local", context={'path': str(path), 'message': str(e)})
            return True

        self.logger.debug('Email enregistré localement', context={'path': str(path), 'to': to})
        return True

    # ------------------------------------------------------------ site emails

    def send_ebook_to_client(self, email: str, name: str) -> bool:
        variables = {
            'NAME': name,
            'EMAIL': email,
            'YEAR': datetime.now().year,
        }
        options = MailOptions(
            sender=self.practitioner,
            to_name=name,
            reply_to=self.practitioner_reply_to,
            attachments=[self.ebook] if self.ebook else [],
            alt_text=(
                f"Bonjour {name},\n\n"
                "Merci de votre intérêt pour notre guide de mobilité \"Épaul\". "
                "Vous trouverez votre ebook en pièce jointe à cet email.\n\n"
                "Cordialement,\nEnora\nEnorehab"
            ),
        )
        return self.send_template(
            email,
            'Votre ebook gratuit : Épaul - Guide de mobilité',
            TEMPLATE_EBOOK,
            variables,
            options,
        )

    def send_ebook_admin_notification(self, data: Mapping[str, Any], db_success: bool = True,
                                      stats: Optional[SubscriberStats] = None) -> bool:
        variables = {
            'NAME': data['name'],
            'EMAIL': data['email'],
            'DATE': datetime.now().strftime('%d/%m/%Y %H:%M:%S'),
            'IP': self.remote_addr,
            'CONSENT': 'Oui' if data.get('consent') else 'Non',
            'DB_SUCCESS': 'Oui' if db_success else 'Non',
            'DB_COLOR': '#0ed0ff' if db_success else '#ff6b6b',
            'TOTAL_DOWNLOADS': stats.total if stats else '?',
            'TODAY_DOWNLOADS': stats.today if stats else '?',
            'MAIL_LIST_COUNT': stats.mailing_list_count if stats else '?',
        }
        options = MailOptions(reply_to=Address(data['email'], data['name']))
        return self.send_template(
            self.admin.email,
            f"Nouveau téléchargement d'ebook - {data['name']}",
            TEMPLATE_ADMIN_EBOOK,
            variables,
            options,
        )

    def send_bilan_client_confirmation(self, email: str, name: str, phone: str = '', instagram: str = '') -> bool:
        variables = {
            'NAME': name,
            'EMAIL': email,
            'PHONE': phone or NOT_PROVIDED,
            'INSTAGRAM': instagram or NOT_PROVIDED,
        }
        options = MailOptions(
            sender=self.practitioner,
            to_name=name,
            reply_to=self.practitioner_reply_to,
        )
        return self.send_template(
            email,
            'Confirmation de votre bilan kiné personnalisé',
            TEMPLATE_CLIENT_BILAN,
            variables,
            options,
        )

    def send_bilan_admin_notification(self, data: Mapping[str, Any], db_success: bool = True,
                                      db_error_message: str = '') -> bool:
        variables: Dict[str, Any] = {
            'NAME': data['name'],
            'EMAIL': data['email'],
            'PHONE': data.get('phone') or NOT_PROVIDED,
            'INSTAGRAM': data.get('instagram') or NOT_PROVIDED,
            'DATE': datetime.now().strftime('%d/%m/%Y %H:%M:%S'),
            'IP': self.remote_addr,
            'DB_STATUS': ('Enregistré avec succès en base de données' if db_success
                          else "Échec de l'enregistrement en base"),
            'DB_BG_COLOR': '#1a3a1a' if db_success else '#3a1a1a',
            'DB_ERROR_MESSAGE': db_error_message,
        }
        options = MailOptions(reply_to=Address(data['email'], data['name']))
        return self.send_template(
            self.admin.email,
            f"Nouvelle demande de bilan kiné - {data['name']}",
            TEMPLATE_ADMIN_BILAN,
            variables,
            options,
        )
