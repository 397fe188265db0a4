"""Filename templates for received files."""

DEFAULT_NAMING = "%f_%t"


def resolve_filename(
    template: str,
    origin: str,
    arrival: float,
    suggested_name: str | None,
) -> str:
    """
    Expand a naming template for one received file.

    %f -> sending app without broker (e.g. ``app1.proxy2``)
    %t -> arrival time as unix seconds
    %n -> the sender's suggested name, or nothing

    Placeholders are replaced in that order, so a suggested name containing
    ``%f`` or ``%t`` is never expanded itself.
    """
    sender = ".".join(origin.split(".")[:2])
    return (
        template.replace("%f", sender)
        .replace("%t", str(int(arrival)))
        # suggested_name is validated when the metadata is decoded
        .replace("%n", suggested_name or "")
    )
