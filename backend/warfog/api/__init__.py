from warfog.errors import ValidationError


def int_field(data: dict, key: str):
    """Integer id from a JSON body; None if absent."""
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f'{key} must be an integer')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{key} must be an integer')
