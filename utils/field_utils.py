import datetime
import math


def clean_str(value):
    """
    Convert an incoming form/JSON value to a clean string.

    - None -> ""
    - Numbers -> their string representation
    - Datetime/date -> "YYYY-MM-DD"
    - Str -> stripped
    """
    if value is None:
        return ""

    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.strftime("%Y-%m-%d")

    return str(value).strip()


def parse_int_field(value, label):
    value = clean_str(value)
    if value == "":
        return None, None
    try:
        return int(value), None
    except (TypeError, ValueError):
        return None, f"{label} must be a whole number."


def parse_float_field(value, label):
    value = clean_str(value)
    if value == "":
        return None, None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None, f"{label} must be a number."
    if not math.isfinite(parsed):
        return None, f"{label} must be a number."
    return parsed, None


def parse_date_field(value, label):
    value = clean_str(value)
    if value == "":
        return None, None
    try:
        return datetime.date.fromisoformat(value[:10]), None
    except ValueError:
        return None, f"{label} must be a date in YYYY-MM-DD format."


def sanitize_filename_part(value):
    return "".join(ch if ch.isascii() and ch.isalnum() else "_" for ch in clean_str(value))
