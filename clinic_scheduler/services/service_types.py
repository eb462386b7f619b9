from typing import NamedTuple

from clinic_scheduler.models.user import Specialization


class ServiceOption(NamedTuple):
    label: str
    value: str
    service_type: str


PHYSICIAN_SERVICE_OPTIONS = [
    ServiceOption('Physical examinations', 'Assessment-physical', 'Assessment'),
    ServiceOption('Consultations', 'Consultation-general', 'Consultation'),
    ServiceOption('Medical certificate issuance', 'Consultation-cert', 'Consultation'),
]

DENTIST_SERVICE_OPTIONS = [
    ServiceOption('Consultations and examinations', 'Dental-consult', 'Dental'),
    ServiceOption('Oral prophylaxis', 'Dental-cleaning', 'Dental'),
    ServiceOption('Tooth extractions', 'Dental-extraction', 'Dental'),
    ServiceOption('Dental certificate issuance', 'Dental-cert', 'Dental'),
]

SERVICE_TYPE_PREFIXES = ('Consultation', 'Dental', 'Assessment')


def service_options_for(specialization: str | None) -> list[ServiceOption]:
    if specialization == Specialization.PHYSICIAN.value:
        return PHYSICIAN_SERVICE_OPTIONS
    if specialization == Specialization.DENTIST.value:
        return DENTIST_SERVICE_OPTIONS
    return []


def resolve_service_type(value: str | None) -> str | None:
    """Map a service option value to its service type; ``None`` when blank."""
    normalized = (value or '').strip()
    if not normalized:
        return None

    for option in PHYSICIAN_SERVICE_OPTIONS + DENTIST_SERVICE_OPTIONS:
        if option.value == normalized:
            return option.service_type

    for prefix in SERVICE_TYPE_PREFIXES:
        if normalized.startswith(prefix):
            return prefix

    return 'Other'
