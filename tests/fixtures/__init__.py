# Test data and fixtures


# Pricing file with a free and a paid plan
SAMPLE_CATALOG_DATA = {
    "plans": {
        "plan:free@0": {
            "title": "Free",
            "features": {
                "feature:seats": {"title": "Seats", "base": 0},
                "feature:requests": {
                    "title": "Requests",
                    "aggregate": "sum",
                    "tiers": [{"upto": 100, "price": 0}],
                },
            },
        },
        "plan:pro@1": {
            "title": "Pro",
            "features": {
                "feature:seats": {"title": "Seats", "base": 1000},
                "feature:requests": {
                    "title": "Requests",
                    "aggregate": "sum",
                    "mode": "graduated",
                    "tiers": [
                        {"upto": 1000, "price": 0},
                        {"upto": 10000, "price": 0.25, "base": 500},
                    ],
                    "divide": {"by": 10, "rounding": "up"},
                },
                "feature:storage": {
                    "title": "Storage",
                    "aggregate": "max",
                    "tiers": [{"price": 0.0001}],
                },
            },
        },
    }
}

# Customer details for an org
SAMPLE_ORG_INFO_DATA = {
    "email": "billing@acme.test",
    "name": "Acme",
    "description": "Acme Corp",
    "metadata": {"region": "us"},
}

# Error body returned by the ledger when a lookup key is reused
SAMPLE_EXISTS_ERROR_BODY = {
    "error": {
        "type": "invalid_request_error",
        "code": "resource_already_exists",
        "param": "lookup_key",
        "message": "A price with this lookup key already exists.",
    }
}
