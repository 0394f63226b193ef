"""Static alias and synonym tables used by the semantic matcher."""

CATEGORY_SYNONYMS: dict[str, tuple[str, ...]] = {
    "Technology": (
        "tech",
        "software",
        "hardware",
        "computer",
        "digital",
        "it services",
        "information technology",
        "software subscription",
        "saas",
        "cloud services",
    ),
    "Travel & Entertainment": (
        "travel",
        "entertainment",
        "meals",
        "dining",
        "restaurant",
        "hotel",
        "transportation",
        "flights",
        "business meals",
        "client entertainment",
    ),
    "Office Supplies": (
        "office",
        "supplies",
        "stationery",
        "paper",
        "pens",
        "equipment",
        "office equipment",
        "furniture",
        "desk supplies",
    ),
    "Professional Services": (
        "consulting",
        "legal",
        "accounting",
        "professional",
        "advisory",
        "expert services",
        "contractor",
        "freelancer",
    ),
    "Marketing & Advertising": (
        "marketing",
        "advertising",
        "promotion",
        "branding",
        "social media",
        "digital marketing",
        "print advertising",
        "online ads",
    ),
    "Utilities": (
        "utilities",
        "electricity",
        "gas",
        "water",
        "internet",
        "phone",
        "telecommunications",
        "cellular",
        "wifi",
    ),
    "Maintenance & Repairs": (
        "maintenance",
        "repairs",
        "facility",
        "building",
        "cleaning",
        "janitorial",
        "upkeep",
        "service",
    ),
    "Business Insurance": ("insurance", "liability", "coverage", "premium", "policy"),
    "Training & Education": (
        "training",
        "education",
        "course",
        "certification",
        "workshop",
        "conference",
        "seminar",
        "learning",
    ),
}

VENDOR_ALIASES: dict[str, tuple[str, ...]] = {
    "Microsoft": (
        "Microsoft Corporation",
        "Microsoft Corp",
        "MSFT",
        "Microsoft Inc",
        "MSFT Azure",
        "Microsoft Azure",
        "Azure",
        "Microsoft 365",
    ),
    "Google": ("Google LLC", "Google Inc", "Alphabet Inc", "Google Ireland Limited", "Google Cloud", "GCP"),
    "Amazon": ("Amazon.com", "Amazon Web Services", "AWS", "Amazon Inc", "AMZN Mktp"),
    "Apple": ("Apple Inc", "Apple Computer", "Apple Computer Inc"),
    "Adobe": ("Adobe Systems", "Adobe Inc", "Adobe Systems Incorporated"),
    "Salesforce": ("Salesforce.com", "Salesforce Inc", "SFDC"),
    "Oracle": ("Oracle Corporation", "Oracle Corp", "Oracle Systems"),
    "IBM": ("International Business Machines", "IBM Corporation", "IBM Corp"),
    "Cisco": ("Cisco Systems", "Cisco Inc", "Cisco Systems Inc"),
    "Intel": ("Intel Corporation", "Intel Corp", "Intel Inc"),
}
