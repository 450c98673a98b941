"""WTForms forms for the login, registration and checkout pages."""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from wtforms import DecimalField, EmailField, Form, PasswordField, StringField
from wtforms.validators import (
    DataRequired,
    Email,
    EqualTo,
    InputRequired,
    Length,
    NumberRange,
    StopValidation,
    ValidationError,
)


def _password_length(form, field) -> None:
    minimum = current_app.config.get("PAYGATE_MIN_PASSWORD_LENGTH", 6)
    if len(field.data or "") < minimum:
        raise ValidationError(f"The password must be at least {minimum} characters.")


def _finite_amount(form, field) -> None:
    # Decimal parses "Infinity" and "NaN"; neither converts to minor units.
    if field.data is not None and not field.data.is_finite():
        raise StopValidation("The amount must be a number.")


class LoginForm(Form):
    email = EmailField(
        "Email",
        validators=[
            DataRequired("The email field is required."),
            Email("The email must be a valid email address."),
        ],
    )
    password = PasswordField(
        "Password",
        validators=[DataRequired("The password field is required."), _password_length],
    )


class RegistrationForm(Form):
    """Sign-up form. E-mail uniqueness is checked by the view against the database."""

    name = StringField(
        "Name",
        validators=[
            DataRequired("The name field is required."),
            Length(max=255, message="The name may not be greater than 255 characters."),
        ],
    )
    email = EmailField(
        "Email",
        validators=[
            DataRequired("The email field is required."),
            Email("The email must be a valid email address."),
            Length(max=255, message="The email may not be greater than 255 characters."),
        ],
    )
    password = PasswordField(
        "Password",
        validators=[
            DataRequired("The password field is required."),
            _password_length,
            EqualTo("password_confirmation", message="The password confirmation does not match."),
        ],
    )
    password_confirmation = PasswordField("Confirm password")


class CheckoutForm(Form):
    """Amount and description posted to either checkout endpoint."""

    amount = DecimalField(
        "Amount",
        places=2,
        validators=[
            InputRequired("The amount field is required."),
            _finite_amount,
            NumberRange(min=Decimal("1"), message="The amount must be at least 1."),
        ],
    )
    description = StringField(
        "Description",
        validators=[
            DataRequired("The description field is required."),
            Length(max=255, message="The description may not be greater than 255 characters."),
        ],
    )


def form_errors(form: Form) -> list[str]:
    """Flatten every field error of *form* into one list, in field order."""
    return [error for field in form for error in field.errors]
