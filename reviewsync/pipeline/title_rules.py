"""
Default product title cleaning rules.

Order matters: rules run top to bottom and each one sees the output of the
previous. Override with a JSON file via TITLE_RULES_FILE.
"""

DEFAULT_RULES = [
    {
        "id": "normalize-poschl-umlaut",
        "pattern": "Pöschl",
        "replacement": "Poschl",
    },
    {
        "id": "pipe-to-dash",
        "pattern": " | ",
        "replacement": " - ",
    },
    {
        # Bare "Ozona ..." titles are listed under the Poschl brand
        "id": "add-poschl-prefix",
        "pattern": r"(?<!Poschl )\bOzona\b",
        "replacement": "Poschl Ozona",
        "isRegex": True,
    },
    {
        "id": "remove-snuff-suffix",
        "pattern": r"\s+Snuff$",
        "replacement": "",
        "isRegex": True,
    },
    {
        "id": "remove-apostrophes",
        "pattern": "'",
        "replacement": "",
    },
    {
        "id": "remove-curly-apostrophes",
        "pattern": "’",
        "replacement": "",
    },
    {
        "id": "trailing-possessive-gawiths",
        "pattern": r"\bGawiths\b",
        "replacement": "Gawith",
        "isRegex": True,
    },
]

DEFAULT_EXCEPTIONS = [
    {"productName": "Poschl | Ozona President", "skipRules": ["add-poschl-prefix"]},
    {"productName": "Ozona Snuffy", "skipRules": ["add-poschl-prefix"]},
    # "Snuff" is part of these product names
    {"productName": "Bernard Tiger Snuff", "skipRules": ["remove-snuff-suffix"]},
    {"productName": "Simply Snuff", "skipRules": ["remove-snuff-suffix"]},
]
