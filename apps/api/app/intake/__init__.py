from app.intake.models import ClientIntake, RelatedParty

__all__ = [
    "ClientIntake",
    "RelatedParty",
]
