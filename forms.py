"""
SignBox Forms Module
Flask-WTF forms validating the JSON bodies of the admin API
"""
from datetime import datetime
from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import StringField, PasswordField, BooleanField, SelectField, SelectMultipleField, IntegerField, DateField
from wtforms.validators import DataRequired, InputRequired, Length, Optional, ValidationError, Regexp, NumberRange

from models import TransitionType

TIME_PATTERN = r'^\d{2}:\d{2}(:\d{2})?$'
WEEKDAY_CHOICES = [(0, 'Sunday'), (1, 'Monday'), (2, 'Tuesday'), (3, 'Wednesday'),
                   (4, 'Thursday'), (5, 'Friday'), (6, 'Saturday')]


def json_formdata(data):
    """
    Turn a decoded JSON object into form data WTForms can process

    Null values are dropped (the field then counts as missing), lists become
    repeated keys and booleans use the checkbox convention.
    """
    formdata = MultiDict()
    for key, value in (data or {}).items():
        if value is None:
            continue
        if isinstance(value, list):
            for item in value:
                formdata.add(key, str(item))
        elif isinstance(value, bool):
            formdata.add(key, 'y' if value else '')
        else:
            formdata.add(key, str(value))
    return formdata


def parse_time(value):
    if not value:
        return None
    fmt = '%H:%M:%S' if value.count(':') == 2 else '%H:%M'
    return datetime.strptime(value, fmt).time()


class JsonForm(FlaskForm):
    """Base for forms fed from JSON; CSRF is enforced globally by CSRFProtect"""

    class Meta:
        csrf = False

    @classmethod
    def from_json(cls, data):
        return cls(formdata=json_formdata(data))

    @property
    def first_error(self):
        for name, errors in self.errors.items():
            if errors:
                return f'{name}: {errors[0]}'
        return None


class LoginForm(JsonForm):
    """User login form"""
    username = StringField('Username', validators=[
        DataRequired(message='Username is required'),
        Length(min=3, max=80, message='Username must be between 3 and 80 characters')
    ])
    password = PasswordField('Password', validators=[
        DataRequired(message='Password is required'),
        Length(min=6, message='Password must be at least 6 characters')
    ])
    remember = BooleanField('Remember Me')


class PlayerCreateForm(JsonForm):
    """Add new player form"""
    name = StringField('Player Name', validators=[
        DataRequired(message='Player name is required'),
        Length(min=3, max=100, message='Player name must be between 3 and 100 characters'),
        Regexp(r'^[a-zA-Z0-9\s\-_]+$', message='Player name can only contain letters, numbers, spaces, hyphens, and underscores')
    ])
    group_id = IntegerField('Group', validators=[Optional()])


class CommandForm(JsonForm):
    """Remote command issue form"""
    player_id = IntegerField('Player', validators=[InputRequired(message='player_id is required')])
    command = StringField('Command', validators=[
        DataRequired(message='command is required'),
        Length(max=50),
        Regexp(r'^[a-z][a-z0-9_]*$', message='Command names are lowercase identifiers')
    ])


class ScheduleEntryForm(JsonForm):
    """One schedule in a replace-all assignment"""
    playlist_id = IntegerField('Playlist', validators=[InputRequired(message='playlist_id is required')])
    start_time = StringField('Start Time', validators=[Optional(), Regexp(TIME_PATTERN, message='Use HH:MM or HH:MM:SS')])
    end_time = StringField('End Time', validators=[Optional(), Regexp(TIME_PATTERN, message='Use HH:MM or HH:MM:SS')])
    days_of_week = SelectMultipleField('Days', coerce=int, choices=WEEKDAY_CHOICES)
    start_date = DateField('Start Date', format='%Y-%m-%d', validators=[Optional()])
    end_date = DateField('End Date', format='%Y-%m-%d', validators=[Optional()])
    priority = IntegerField('Priority', validators=[Optional(), NumberRange(min=0, max=1000)])
    is_fallback = BooleanField('Fallback', default=False)

    # An empty list would read as "every day" once it reaches the form data
    days_given_empty = False

    @classmethod
    def from_json(cls, data):
        form = super().from_json(data)
        form.days_given_empty = (data or {}).get('days_of_week') == []
        return form

    def validate_days_of_week(self, field):
        if self.days_given_empty:
            raise ValidationError('List at least one day, or leave days_of_week out for every day')

    def _validate_time(self, field):
        try:
            parse_time(field.data)
        except ValueError:
            raise ValidationError('Not a valid time of day')

    def validate_start_time(self, field):
        self._validate_time(field)

    def validate_end_time(self, field):
        self._validate_time(field)

    def to_entry(self):
        """Plain dict for utils.playlist_utils.assign_schedules"""
        return {
            'playlist_id': self.playlist_id.data,
            'start_time': parse_time(self.start_time.data),
            'end_time': parse_time(self.end_time.data),
            'days_of_week': self.days_of_week.data or None,
            'start_date': self.start_date.data,
            'end_date': self.end_date.data,
            'priority': self.priority.data or 0,
            'is_fallback': self.is_fallback.data
        }


class ScheduleAssignForm(JsonForm):
    """Target of a schedule assignment: exactly one of player or group"""
    player_id = IntegerField('Player', validators=[Optional()])
    group_id = IntegerField('Group', validators=[Optional()])

    def validate(self, **kwargs):
        if not super().validate(**kwargs):
            return False
        if (self.player_id.data is None) == (self.group_id.data is None):
            self.player_id.errors.append('Exactly one of player_id or group_id is required')
            return False
        return True


class PlaylistItemForm(JsonForm):
    """One item in a replace-all playlist edit"""
    media_id = IntegerField('Media', validators=[InputRequired(message='media_id is required')])
    position = IntegerField('Position', validators=[Optional(), NumberRange(min=0)])
    duration_seconds = IntegerField('Duration', validators=[Optional(), NumberRange(min=1, max=86400)])
    transition_type = SelectField('Transition', default=TransitionType.NONE.value,
                                  choices=[(t.value, t.value.title()) for t in TransitionType])

    def to_entry(self):
        return {
            'media_id': self.media_id.data,
            'position': self.position.data,
            'duration_seconds': self.duration_seconds.data,
            'transition_type': self.transition_type.data
        }
