import os

# Tests never talk to a real record store or document service
os.environ.pop("SUPABASE_URL", None)
os.environ.pop("DOCUMENT_SERVICE_URL", None)
os.environ.pop("FEDERAL_CREDIT_RATE", None)
os.environ.pop("ADDITIONAL_YEAR_PRICE", None)
os.environ.pop("MAX_ADDITIONAL_YEARS", None)
