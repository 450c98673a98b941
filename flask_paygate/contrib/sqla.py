"""Flask-Admin views for payments and users, restricted to admin accounts.

Example::

    from flask import Flask
    from flask_admin import Admin
    from flask_sqlalchemy import SQLAlchemy
    from flask_paygate import Paygate
    from flask_paygate.contrib.sqla import PaygateAdminIndexView
    from flask_paygate.models import Base

    db = SQLAlchemy(model_class=Base)

    app = Flask(__name__)
    app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite:///paygate.db"
    app.config["SECRET_KEY"] = "change-me"
    db.init_app(app)

    admin = Admin(app, name="My Shop", index_view=PaygateAdminIndexView())
    Paygate(app, db=db, admin=admin)   # adds PaymentModelView and UserModelView
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from flask import flash
from flask_admin import AdminIndexView
from flask_admin.actions import action
from flask_admin.contrib.sqla import ModelView
from flask_wtf import FlaskForm
from sqlalchemy import inspect as sa_inspect
from wtforms import ValidationError

from flask_paygate.auth import current_user, deny_admin_access, is_admin
from flask_paygate.errors import GatewayError
from flask_paygate.gateways import PaymentState

if TYPE_CHECKING:
    from flask_paygate import Paygate

logger = logging.getLogger(__name__)

_STATE_CHOICES = [
    ("pending", "Pending"),
    ("processing", "Processing"),
    ("succeeded", "Succeeded"),
    ("failed", "Failed"),
    ("cancelled", "Cancelled"),
    ("refunded", "Refunded"),
    ("unknown", "Unknown"),
]


def _check_state(state) -> None:
    valid_states = {s for s, _ in _STATE_CHOICES}
    if state not in valid_states:
        raise ValidationError(
            f"Invalid state {state!r}. "
            f"Choose one of: {', '.join(sorted(valid_states))}."
        )


class AdminAccessMixin:
    """Only logged-in admins may see the view; everyone else is sent home."""

    def is_accessible(self) -> bool:
        return is_admin(current_user())

    def inaccessible_callback(self, name, **kwargs):
        return deny_admin_access()


class PaygateAdminIndexView(AdminAccessMixin, AdminIndexView):
    """Admin landing page guarded by :class:`AdminAccessMixin`."""


class PaymentModelView(AdminAccessMixin, ModelView):
    """Flask-Admin view for the :class:`~flask_paygate.models.Payment` model.

    Provides:
    - Searchable / filterable list of all payment records.
    - Editing of the state and description, with the new state validated in
      ``on_model_change``.
    - Bulk **Refund**, **Cancel**, and **Sync from Provider** actions.

    Args:
        model: The payment model class.
        session: A SQLAlchemy scoped session (e.g. ``db.session``).
        ext: Optional :class:`~flask_paygate.Paygate` instance. Required only
            for the *Sync from Provider* action.
    """

    column_list = [
        "session_id",
        "provider",
        "description",
        "amount",
        "currency",
        "state",
        "provider_reference",
        "user",
        "created_at",
    ]
    column_searchable_list = ["session_id", "provider", "description", "provider_reference"]
    column_filters = ["state", "provider", "currency"]
    column_default_sort = ("created_at", True)

    # FlaskForm renders the csrf_token that CSRFProtect checks on every POST.
    form_base_class = FlaskForm

    # Payments are only ever created by a checkout.
    can_create = False
    can_delete = False

    form_edit_columns = ["description", "state"]
    form_choices = {"state": _STATE_CHOICES}

    def __init__(self, model, session, *, ext: "Paygate | None" = None, **kwargs: Any) -> None:
        self._ext = ext
        super().__init__(model, session, **kwargs)

    def on_model_change(self, form, model, is_created: bool) -> None:
        """Validate the state when an admin changes it.

        Uses SQLAlchemy's attribute history to run the check only when the
        ``state`` field was actually modified.
        """
        history = sa_inspect(model).attrs.state.history
        if history.has_changes():
            _check_state(history.added[0] if history.added else None)
            logger.info("Admin %s set payment %s to %s", current_user().id, model.session_id, model.state)

    def _mark(self, ids: list[str], state: str, verb: str) -> None:
        try:
            count = 0
            for pk in ids:
                record = self.get_one(pk)
                if record is not None:
                    record.state = state
                    count += 1
            self.session.commit()
            flash(f"{count} payment(s) {verb}.", "success")
        except Exception as exc:  # noqa: BLE001
            self.session.rollback()
            logger.exception("Bulk %s action failed", state)
            flash(f"Failed to update payments: {exc}", "danger")

    @action("refund", "Refund", "Mark selected payments as refunded?")
    def action_refund(self, ids: list[str]) -> None:
        """Mark the selected payment rows as *refunded*."""
        self._mark(ids, "refunded", "marked as refunded")

    @action("cancel", "Cancel", "Cancel the selected payments?")
    def action_cancel(self, ids: list[str]) -> None:
        """Mark the selected payment rows as *cancelled*."""
        self._mark(ids, "cancelled", "cancelled")

    @action("sync", "Sync from Provider", "Sync selected payments from the payment provider?")
    def action_sync(self, ids: list[str]) -> None:
        """Fetch live payment status from each record's provider."""
        if self._ext is None:
            flash("Paygate extension not configured; cannot sync.", "danger")
            return

        count = 0
        for pk in ids:
            record = self.get_one(pk)
            if record is None:
                continue
            try:
                status = self._ext.get_gateway(record.provider).get_status(record.session_id)
            except (KeyError, GatewayError) as exc:
                logger.warning("Could not sync payment %s: %s", record.session_id, exc)
                continue
            if not PaymentState(record.state).accepts(status.state):
                logger.info(
                    "Ignoring %s report for payment %s, already %s",
                    status.state.value,
                    record.session_id,
                    record.state,
                )
                continue
            record.state = status.state.value
            if status.reference:
                record.provider_reference = status.reference
            count += 1
        self.session.commit()
        flash(f"{count} payment(s) synced from provider.", "success")


class UserModelView(AdminAccessMixin, ModelView):
    """Flask-Admin view for user accounts.

    Admins can rename users and grant or revoke admin rights. Password
    hashes are never listed or editable.
    """

    column_list = ["id", "name", "email", "is_admin", "created_at"]
    column_exclude_list = ["password_hash"]
    column_searchable_list = ["name", "email"]
    column_filters = ["is_admin"]
    column_default_sort = ("id", True)
    form_base_class = FlaskForm

    can_create = False
    form_columns = ["name", "email", "is_admin"]

    def on_model_change(self, form, model, is_created: bool) -> None:
        history = sa_inspect(model).attrs.is_admin.history
        if history.has_changes() and model.id == current_user().id and not model.is_admin:
            raise ValidationError("You cannot revoke your own admin rights.")
