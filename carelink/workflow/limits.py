"""Field bounds shared by request schemas and entity validators."""

PURPOSE_MIN_LENGTH = 10
PURPOSE_MAX_LENGTH = 500

REASON_MIN_LENGTH = 10
REASON_MAX_LENGTH = 1000

NOTE_MIN_LENGTH = 10
NOTE_MAX_LENGTH = 2000

SHORT_NOTES_MAX_LENGTH = 500
MESSAGE_MAX_LENGTH = 1000
DIAGNOSIS_MAX_LENGTH = 1000

TAX_RATE_MIN = 0
TAX_RATE_MAX = 100
