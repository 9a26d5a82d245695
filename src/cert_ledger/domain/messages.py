"""User-facing messages returned in failure and success envelopes."""

# Ingestion
INVALID_BATCH_FILE = "Unable to read the batch file"
INVALID_SHEET_NAME = "The batch file must contain a sheet named 'Batch'"
INVALID_HEADERS = "Invalid headers in the batch file"
EMPTY_BATCH = "The batch file contains no certificate rows"
BATCH_LIMIT_EXCEEDED = "The batch file exceeds the allowed number of records"
MISSING_DETAILS = "Certification ID, name, certification name and grant date are required in every row"
INVALID_CERTIFICATE_IDS = "Certification IDs must be within the allowed length and contain no special characters"
DUPLICATE_IDS_IN_BATCH = "The batch file contains repeated certification IDs"
NAME_TOO_LONG = "Holder names must not exceed the allowed length"
INVALID_DATE_FORMAT = "Invalid date format, dates must be MM/DD/YYYY"
GRANT_AFTER_EXPIRATION = "Grant date must not be later than the expiration date"
IDS_ALREADY_ISSUED = "The batch file contains certification IDs that are already issued"

# Issuance guards
MISSING_FIELDS = "All certificate fields are required"
INVALID_CERTIFICATE_NUMBER = "Invalid certificate number length"
ISSUER_NOT_FOUND = "Issuer not found"
ISSUER_INACTIVE = "Issuer account is not active"
INVALID_ISSUER_ADDRESS = "Issuer ledger address is not valid"
CERTIFICATE_NUMBER_USED = "Certificate number already issued"
DATES_SAME = "Grant date and expiration date must not be the same"
EXPIRATION_TOO_SOON = "Expiration date must be further in the future"
LEDGER_PAUSED = "Operation not possible, the ledger is paused"
MISSING_ISSUER_ROLE = "Issuer does not hold the issuer role on the ledger"
ALREADY_ON_LEDGER = "Certificate number already exists on the ledger"

# Lifecycle
CERTIFICATE_NOT_FOUND = "Certificate not found"
RENEWAL_NOT_POSSIBLE_INFINITE = "Update expiration not possible on a certificate without expiry"
RENEWAL_NOT_POSSIBLE_REVOKED = "Renewal not possible on a revoked certificate"
RENEWAL_NOT_LATER = "New expiration date must be later than the current one"
INVALID_TARGET_STATUS = "Only revoke and reactivate status updates are supported"
STATUS_UNCHANGED = "Certificate already has the requested status"
REACTIVATION_NOT_POSSIBLE = "Reactivation not possible, the certificate is not revoked"
CERTIFICATE_EXPIRED = "Operation not possible on an expired certificate"
LEDGER_DISAGREES = "Ledger state does not allow this operation"

# Batch lifecycle
BATCH_NOT_FOUND = "Batch not found"
BATCH_RENEWAL_NOT_POSSIBLE = "Batch renewal not possible on a batch without expiry"
BATCH_PER_ROW_EXPIRATION = "Operation not possible on a batch with per-certificate expirations"
BATCH_REVOKED = "Operation not possible on a revoked batch"
BATCH_EXPIRED = "Reactivation not possible on an expired batch"

# Roles
ROLE_ALREADY_GRANTED = "Account already holds the issuer role"
ROLE_NOT_GRANTED = "Account does not hold the issuer role"

# Partial failures
MIRROR_WRITE_FAILED = "Ledger transaction succeeded but the certificate store update failed"

# Ledger
LEDGER_TIMEOUT = "Ledger did not respond after retries"
LEDGER_REJECTED = "Ledger rejected the transaction"
LEDGER_READ_FAILED = "Unable to read from the ledger"
LEDGER_NO_LINK = "Ledger transaction returned no explorer link"

# Verification
INVALID_VERIFICATION_INPUT = "Unable to decode the verification input"
SHORT_URL_NOT_FOUND = "Short URL not found"

# Success
ISSUED = "Certificate issued successfully"
BATCH_ISSUED = "Batch issued successfully"
RENEWED = "Certificate renewed successfully"
REVOKED = "Certificate revoked successfully"
REACTIVATED = "Certificate reactivated successfully"
BATCH_RENEWED = "Batch renewed successfully"
BATCH_STATUS_UPDATED = "Batch status updated successfully"
ROLE_GRANTED = "Issuer role granted"
ROLE_REVOKED = "Issuer role revoked"
VERIFIED = "Certificate verified"
STATUS_LOG = "Status log entries"
SCHEMA_READY = "Certificate store schema is ready"
