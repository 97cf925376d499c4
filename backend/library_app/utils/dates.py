"""Date helpers shared by the lending and authentication services."""

from datetime import date, datetime, timedelta
from typing import Optional, Union


def compute_due_date(borrow_date: date, period_days: int) -> date:
    """Return the date a loan starting on `borrow_date` falls due."""
    return borrow_date + timedelta(days=period_days)


def is_overdue(due_date: date, return_date: Optional[date], today: Optional[date] = None) -> bool:
    """True when a loan is unreturned and its due date has passed.

    Loans are compared by calendar day: a book due today is not overdue
    until tomorrow.
    """
    if return_date is not None:
        return False
    return due_date < (today or date.today())


def format_dob_password(dob: Union[date, datetime, str]) -> str:
    """Format a date of birth as the default `DDMMYYYY` login password."""
    if isinstance(dob, str):
        dob = date.fromisoformat(dob[:10])
    return dob.strftime("%d%m%Y")
