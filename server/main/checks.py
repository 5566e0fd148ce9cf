from django.conf import settings
from django.core.checks import Error, register


@register()
def report_card_places_check(app_configs, **kwargs):
    """Report card averages must fit the scale of ReportCard.average."""
    from main.models import ReportCard

    column = ReportCard._meta.get_field("average").decimal_places
    places = getattr(settings, "REPORT_CARD_AVERAGE_PLACES", 2)
    if isinstance(places, int) and 0 <= places <= column:
        return []
    return [
        Error(
            f"REPORT_CARD_AVERAGE_PLACES must be an integer between 0 and {column}, got {places!r}.",
            hint="Averages are stored in ReportCard.average; extra precision would be rounded away on save.",
            id="main.E001",
        )
    ]
