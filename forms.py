from flask_wtf import FlaskForm
from wtforms import BooleanField, FloatField, PasswordField, SelectField, StringField
from wtforms.validators import AnyOf, DataRequired, Length, NumberRange, Optional, StopValidation, ValidationError

from logic import POSITIONS, WINNERS
from utils import is_iso_date

POSITION_CHOICES = [(p, p) for p in POSITIONS]
WINNER_CHOICES = [(w, w) for w in WINNERS]

POSITION_MESSAGE = 'Position must be Attack, Midfield, or Defense'
WINNER_MESSAGE = "Winner must be 'Team A', 'Team B', 'Draw', or 'Not Played'"
PRICE_MESSAGE = 'Price must be a non-negative number'


def of_type(types, message):
    """Stop the chain unless the submitted JSON value has one of ``types``."""
    types = types if isinstance(types, tuple) else (types,)

    def _of_type(form, field):
        value = field.raw_data[0] if field.raw_data else None
        # bool is an int subclass; only accept it when asked for explicitly
        if not isinstance(value, types) or (isinstance(value, bool) and bool not in types):
            raise StopValidation(message)
    return _of_type


def iso_date(form, field):
    if not is_iso_date(field.data):
        raise ValidationError('Date must be a YYYY-MM-DD string')


def first_error(form):
    for field in form:
        if field.errors:
            return field.errors[0]
    return 'Invalid request'


def provided(form):
    """Data of the fields present in the payload, keyed by field name."""
    return {field.name: field.data for field in form if field.raw_data}


class JsonForm(FlaskForm):
    # JSON bodies carry no CSRF token.
    class Meta:
        csrf = False


class PlayerForm(JsonForm):
    name = StringField('Name', validators=[of_type(str, 'Name is required'),
                                           DataRequired('Name is required'), Length(max=200)])
    position = SelectField('Position', choices=POSITION_CHOICES, validate_choice=False,
                           validators=[AnyOf(POSITIONS, message=POSITION_MESSAGE)])


class PlayerUpdateForm(JsonForm):
    name = StringField('Name', validators=[Optional(), of_type(str, 'Name must be a non-empty string'),
                                           Length(max=200)])
    position = SelectField('Position', choices=POSITION_CHOICES, validate_choice=False,
                           validators=[Optional(), AnyOf(POSITIONS, message=POSITION_MESSAGE)])


class MatchForm(JsonForm):
    date = StringField('Date', validators=[of_type(str, 'Date is required'),
                                           DataRequired('Date is required'), iso_date])
    time = StringField('Time', validators=[of_type(str, 'Time is required'), DataRequired('Time is required')])
    price = FloatField('Price', validators=[of_type((int, float), PRICE_MESSAGE),
                                            NumberRange(min=0, message=PRICE_MESSAGE)])
    location = StringField('Location', validators=[Optional(), of_type(str, 'Location must be a string'),
                                                   Length(max=200)])
    pitch = StringField('Pitch', validators=[Optional(), of_type(str, 'Pitch must be a string'),
                                             Length(max=100)])


class MatchUpdateForm(JsonForm):
    date = StringField('Date', validators=[Optional(), of_type(str, 'Date must be a string'), iso_date])
    time = StringField('Time', validators=[Optional(), of_type(str, 'Time must be a string')])
    price = FloatField('Price', validators=[Optional(), of_type((int, float), PRICE_MESSAGE),
                                            NumberRange(min=0, message=PRICE_MESSAGE)])
    location = StringField('Location', validators=[Optional(strip_whitespace=False),
                                                   of_type(str, 'Location must be a string'), Length(max=200)])
    pitch = StringField('Pitch', validators=[Optional(strip_whitespace=False),
                                             of_type(str, 'Pitch must be a string'), Length(max=100)])


class WinnerForm(JsonForm):
    winner = SelectField('Winner', choices=WINNER_CHOICES, validate_choice=False,
                         validators=[AnyOf(WINNERS, message=WINNER_MESSAGE)])


class PaymentForm(JsonForm):
    paid = BooleanField('Paid', validators=[of_type(bool, 'paid must be a boolean')])


class LoginForm(JsonForm):
    password = PasswordField('Password')
