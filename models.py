"""
SignBox Database Models
SQLAlchemy ORM models for companies, players, media, playlists, schedules and commands
"""
import enum
import hashlib
import json
import secrets
from datetime import datetime, timedelta, timezone

from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()


def utcnow():
    """Naive UTC timestamp, matching how the database stores datetimes"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _load_json(raw, default=None):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


class UserRole(enum.Enum):
    """User role enumeration for RBAC"""
    ADMIN = 'admin'        # Full access
    OPERATOR = 'operator'  # Manage content, schedules and send commands
    VIEWER = 'viewer'      # Read-only access to player status


class MediaType(enum.Enum):
    """Media asset variants"""
    IMAGE = 'image'
    VIDEO = 'video'
    URL = 'url'
    WIDGET = 'widget'


class TransitionType(enum.Enum):
    """Entrance effect applied when a playlist item comes on screen"""
    NONE = 'none'
    FADE = 'fade'
    SLIDE = 'slide'


class CommandStatus(enum.Enum):
    """Remote command lifecycle: pending -> sent -> executed | failed"""
    PENDING = 'pending'
    SENT = 'sent'
    EXECUTED = 'executed'
    FAILED = 'failed'


class CommandName(enum.Enum):
    """Commands the stock player understands (the channel accepts others)"""
    REBOOT = 'reboot'
    SCREENSHOT = 'screenshot'
    CLEAR_CACHE = 'clear_cache'
    REFRESH = 'refresh'


class Company(db.Model):
    """Tenant owning players, media, playlists and schedules"""
    __tablename__ = 'companies'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f'<Company {self.name}>'


class User(UserMixin, db.Model):
    """Admin user model for dashboard authentication"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=True)
    role = db.Column(db.Enum(UserRole), default=UserRole.VIEWER, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    is_active = db.Column(db.Boolean, default=True)  # type: ignore
    last_login = db.Column(db.DateTime, nullable=True)

    company = db.relationship('Company')

    def set_password(self, password):
        """Hash and set password"""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Verify password against hash"""
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN

    @property
    def is_operator(self):
        return self.role == UserRole.OPERATOR

    @property
    def can_manage_content(self):
        """Check if user can edit playlists and schedules"""
        return self.is_admin or self.is_operator

    @property
    def can_send_commands(self):
        """Check if user can send remote commands"""
        return self.is_admin or self.is_operator

    def __repr__(self):
        return f'<User {self.username} ({self.role.value})>'


class PlayerGroup(db.Model):
    """Group of players sharing group-level schedules"""
    __tablename__ = 'player_groups'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f'<PlayerGroup {self.name}>'


class Player(db.Model):
    """Signage box identified by a long-lived device key"""
    __tablename__ = 'players'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False, index=True)
    group_id = db.Column(db.Integer, db.ForeignKey('player_groups.id', ondelete='SET NULL'), nullable=True)
    name = db.Column(db.String(100), nullable=False)
    device_key_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)
    status = db.Column(db.String(20), default='offline', nullable=False)  # online, offline
    last_heartbeat = db.Column(db.DateTime, nullable=True)
    session_token = db.Column(db.String(64), nullable=True)
    session_generation = db.Column(db.Integer, default=0, nullable=False)
    last_screenshot_url = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    group = db.relationship('PlayerGroup', backref='players', foreign_keys=[group_id])
    company = db.relationship('Company')

    @staticmethod
    def generate_device_key():
        """Generate a secure random device key"""
        return secrets.token_urlsafe(32)

    @staticmethod
    def hash_device_key(device_key):
        """Device keys are looked up by digest, so the hash must be deterministic"""
        return hashlib.sha256(device_key.encode('utf-8')).hexdigest()

    @classmethod
    def find_by_device_key(cls, device_key):
        if not device_key:
            return None
        return cls.query.filter_by(device_key_hash=cls.hash_device_key(device_key)).first()

    @property
    def is_online(self):
        """Check if player is online based on last heartbeat age"""
        if not self.last_heartbeat:
            return False

        from flask import current_app
        timeout = timedelta(minutes=current_app.config['PLAYER_OFFLINE_MINUTES'])
        return utcnow() - self.last_heartbeat < timeout

    def mark_seen(self, when=None):
        self.status = 'online'
        self.last_heartbeat = when or utcnow()

    def to_status_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'group_id': self.group_id,
            'status': self.status,
            'is_online': self.is_online,
            'last_heartbeat': self.last_heartbeat.isoformat() if self.last_heartbeat else None,
            'last_screenshot_url': self.last_screenshot_url
        }

    def __repr__(self):
        return f'<Player {self.name}>'


class MediaAsset(db.Model):
    """Image, video, external URL or widget content"""
    __tablename__ = 'media_assets'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    media_type = db.Column(db.Enum(MediaType), nullable=False)
    storage_path = db.Column(db.String(500), nullable=True)  # Relative to MEDIA_FOLDER
    external_url = db.Column(db.String(1000), nullable=True)
    duration_seconds = db.Column(db.Integer, nullable=False, default=10)
    size_bytes = db.Column(db.BigInteger, nullable=False, default=0)
    mime_type = db.Column(db.String(100), nullable=True)
    widget_config = db.Column(db.Text, nullable=True)  # JSON
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    @property
    def is_file_backed(self):
        return bool(self.storage_path)

    def __repr__(self):
        return f'<MediaAsset {self.name} ({self.media_type.value})>'


class Playlist(db.Model):
    """Ordered set of media with a monotonically increasing version"""
    __tablename__ = 'playlists'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    version = db.Column(db.Integer, default=1, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    items = db.relationship('PlaylistItem', backref='playlist', lazy='select',
                            cascade='all, delete-orphan', order_by='PlaylistItem.position')

    def bump_version(self):
        """Versions only ever move forward; players use them to skip refetches"""
        self.version = (self.version or 0) + 1
        self.updated_at = utcnow()
        return self.version

    @property
    def ordered_items(self):
        """Positions may have gaps, so consumers sort instead of indexing"""
        return sorted(self.items, key=lambda item: (item.position, item.id or 0))

    def __repr__(self):
        return f'<Playlist {self.name} v{self.version}>'


class PlaylistItem(db.Model):
    """One media asset placed in a playlist"""
    __tablename__ = 'playlist_items'

    id = db.Column(db.Integer, primary_key=True)
    playlist_id = db.Column(db.Integer, db.ForeignKey('playlists.id', ondelete='CASCADE'), nullable=False)
    media_id = db.Column(db.Integer, db.ForeignKey('media_assets.id', ondelete='CASCADE'), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    duration_seconds = db.Column(db.Integer, nullable=True)  # Overrides media duration
    transition_type = db.Column(db.Enum(TransitionType), default=TransitionType.NONE, nullable=False)

    media = db.relationship('MediaAsset')

    @property
    def effective_duration(self):
        if self.duration_seconds:
            return self.duration_seconds
        return self.media.duration_seconds if self.media else None

    def __repr__(self):
        return f'<PlaylistItem Playlist:{self.playlist_id} Media:{self.media_id} Pos:{self.position}>'


class Schedule(db.Model):
    """Binds a playlist to a player or a group for a day/time window"""
    __tablename__ = 'schedules'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False, index=True)
    playlist_id = db.Column(db.Integer, db.ForeignKey('playlists.id', ondelete='CASCADE'), nullable=False)

    # Target (exactly one)
    player_id = db.Column(db.Integer, db.ForeignKey('players.id', ondelete='CASCADE'), nullable=True)
    group_id = db.Column(db.Integer, db.ForeignKey('player_groups.id', ondelete='CASCADE'), nullable=True)

    start_time = db.Column(db.Time, nullable=True)
    end_time = db.Column(db.Time, nullable=True)
    days_of_week = db.Column(db.String(20), nullable=True)  # "1,2,3,4,5" with 0 = Sunday
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    priority = db.Column(db.Integer, default=0, nullable=False)
    is_fallback = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    playlist = db.relationship('Playlist')

    __table_args__ = (
        db.CheckConstraint('(player_id IS NOT NULL AND group_id IS NULL) OR (player_id IS NULL AND group_id IS NOT NULL)',
                           name='check_player_or_group'),
        db.Index('uq_schedule_fallback_player', 'player_id', unique=True,
                 sqlite_where=db.text('is_fallback AND player_id IS NOT NULL'),
                 postgresql_where=db.text('is_fallback AND player_id IS NOT NULL')),
        db.Index('uq_schedule_fallback_group', 'group_id', unique=True,
                 sqlite_where=db.text('is_fallback AND group_id IS NOT NULL'),
                 postgresql_where=db.text('is_fallback AND group_id IS NOT NULL')),
    )

    @property
    def days_list(self):
        """Return list of day numbers from days_of_week string"""
        if not self.days_of_week:
            return None
        return [int(d) for d in self.days_of_week.split(',') if d.strip()]

    def to_dict(self):
        return {
            'id': self.id,
            'playlist_id': self.playlist_id,
            'player_id': self.player_id,
            'group_id': self.group_id,
            'start_time': self.start_time.strftime('%H:%M:%S') if self.start_time else None,
            'end_time': self.end_time.strftime('%H:%M:%S') if self.end_time else None,
            'days_of_week': self.days_list,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'priority': self.priority,
            'is_fallback': self.is_fallback
        }

    def __repr__(self):
        target = f'Player:{self.player_id}' if self.player_id else f'Group:{self.group_id}'
        return f'<Schedule {target} Playlist:{self.playlist_id} P{self.priority}>'


class PlayerCommand(db.Model):
    """Out-of-band action queued for a player"""
    __tablename__ = 'player_commands'

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('players.id', ondelete='CASCADE'), nullable=False, index=True)
    command = db.Column(db.String(50), nullable=False)
    payload = db.Column(db.Text, nullable=True)  # JSON parameters
    status = db.Column(db.Enum(CommandStatus), default=CommandStatus.PENDING, nullable=False, index=True)
    result = db.Column(db.Text, nullable=True)  # JSON result reported by the player
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    sent_at = db.Column(db.DateTime, nullable=True)
    executed_at = db.Column(db.DateTime, nullable=True)

    player = db.relationship('Player', backref=db.backref('commands', lazy='dynamic', cascade='all, delete-orphan'))

    @property
    def is_terminal(self):
        return self.status in (CommandStatus.EXECUTED, CommandStatus.FAILED)

    def to_delivery_dict(self):
        """Shape handed to the player"""
        return {
            'id': self.id,
            'command': self.command,
            'payload': _load_json(self.payload, {})
        }

    def to_dict(self):
        return {
            'id': self.id,
            'player_id': self.player_id,
            'command': self.command,
            'payload': _load_json(self.payload, {}),
            'status': self.status.value,
            'result': _load_json(self.result),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'sent_at': self.sent_at.isoformat() if self.sent_at else None,
            'executed_at': self.executed_at.isoformat() if self.executed_at else None
        }

    def __repr__(self):
        return f'<PlayerCommand {self.command} ({self.status.value}) Player:{self.player_id}>'


class PlayerLog(db.Model):
    """Audit trail of player protocol events"""
    __tablename__ = 'player_logs'

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('players.id', ondelete='CASCADE'), nullable=False, index=True)
    event = db.Column(db.String(100), nullable=False, index=True)
    details = db.Column(db.Text, nullable=True)  # JSON
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

    @property
    def details_dict(self):
        return _load_json(self.details, {})

    def __repr__(self):
        return f'<PlayerLog {self.event} Player:{self.player_id}>'


class PlaybackLog(db.Model):
    """Proof-of-play record reported by the player"""
    __tablename__ = 'playback_logs'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey('players.id', ondelete='CASCADE'), nullable=False, index=True)
    media_id = db.Column(db.Integer, db.ForeignKey('media_assets.id', ondelete='CASCADE'), nullable=False)
    playlist_id = db.Column(db.Integer, db.ForeignKey('playlists.id', ondelete='SET NULL'), nullable=True)
    started_at = db.Column(db.DateTime, nullable=False, index=True)
    ended_at = db.Column(db.DateTime, nullable=True)
    duration_seconds = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(20), default='completed', nullable=False)

    def __repr__(self):
        return f'<PlaybackLog Player:{self.player_id} Media:{self.media_id}>'
