import datetime
import stacore
from .errors import ValidationError


def parse_datetime(attr_val):
    """
    Parse the supplied ISO 8601 `attr_val` so it can be compared with or saved in a DateTime column

    :param attr_val: wire value, eg. "2019-03-01T12:00:00Z"
    :return: naive datetime (UTC)
    """
    if attr_val is None or isinstance(attr_val, datetime.datetime):
        return attr_val

    date_str = str(attr_val).strip()
    if date_str.endswith("Z"):
        # fromisoformat doesn't accept the "Z" suffix before python 3.11
        date_str = date_str[:-1] + "+00:00"
    try:
        result = datetime.datetime.fromisoformat(date_str)
    except ValueError as exc:
        stacore.log.debug(f'Invalid datetime {exc} for value "{attr_val}"')
        raise ValidationError(f'Invalid datetime "{attr_val}"')

    if result.tzinfo is not None:
        result = result.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return result


def format_datetime(attr_val):
    """
    :param attr_val: naive UTC datetime
    :return: ISO 8601 string with "Z" suffix
    """
    if attr_val is None:
        return None
    return attr_val.isoformat() + "Z"
