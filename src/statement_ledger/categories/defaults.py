"""Built-in expense categories and their keyword rules."""

DEFAULT_CATEGORIES: dict[str, str] = {
    "food": "Food & Dining",
    "groceries": "Groceries",
    "transport": "Transport",
    "home": "Home & Utilities",
    "fun": "Entertainment",
    "other": "Other",
}

DEFAULT_CATEGORY_KEY = "other"

DEFAULT_CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "food": [
        "restaurant", "cafe", "coffee", "pizza", "burger", "mcdonald", "mcdonalds",
        "burger king", "kfc", "subway", "starbucks", "dunkin", "chipotle",
        "taco bell", "wendys", "dominos", "pizza hut", "panera", "chick fil a",
        "five guys", "shake shack", "in n out", "panda express", "popeyes",
        "diner", "bistro", "grill", "bar", "pub", "eatery",
        "food", "dining", "meal", "lunch", "dinner", "breakfast", "brunch",
        "delivery", "uber eats", "doordash", "grubhub", "postmates", "deliveroo",
    ],
    "groceries": [
        "supermarket", "grocery", "market", "whole foods", "trader joe",
        "safeway", "kroger", "albertsons", "publix", "wegmans", "aldi",
        "costco", "walmart", "target", "sams club", "bjs", "food lion",
        "harris teeter", "giant", "stop shop", "shoprite", "hannaford",
        "winn dixie", "meijer", "heb", "sprouts", "fresh market",
    ],
    "transport": [
        "uber", "lyft", "taxi", "cab", "gas", "gasoline", "fuel", "shell",
        "exxon", "bp", "chevron", "mobil", "sunoco", "arco", "citgo",
        "parking", "park", "garage", "metro", "subway", "bus", "train",
        "transit", "mta", "bart", "cta", "wmata", "septa", "mbta",
        "toll", "ezpass", "fastrak", "sunpass", "rental car", "zipcar",
        "turo", "hertz", "enterprise", "avis", "budget",
        "auto", "vehicle", "car wash", "oil change", "smog", "registration",
    ],
    "home": [
        "rent", "lease", "landlord", "apartment", "housing", "mortgage",
        "utilities", "electric", "electricity", "power", "gas", "water",
        "sewer", "trash", "garbage", "internet", "wifi", "cable", "phone",
        "comcast", "xfinity", "verizon", "at t", "spectrum", "cox",
        "directv", "dish", "century link", "frontier", "t mobile", "sprint",
        "furniture", "ikea", "home depot", "lowes", "ace hardware",
        "bed bath", "wayfair", "crate barrel", "pottery barn", "west elm",
        "repair", "maintenance", "plumber", "electrician", "hvac", "cleaning",
    ],
    "fun": [
        "movie", "cinema", "theater", "theatre", "amc", "regal", "cinemark",
        "netflix", "hulu", "disney", "hbo", "amazon prime",
        "spotify", "apple music", "youtube", "twitch", "playstation",
        "xbox", "nintendo", "steam", "game", "gaming", "entertainment",
        "concert", "show", "event", "ticket", "ticketmaster", "stubhub",
        "museum", "zoo", "aquarium", "park", "amusement", "theme park",
        "disneyland", "universal", "six flags", "gym", "fitness", "yoga",
        "peloton", "planet fitness", "la fitness", "equinox", "24 hour",
        "spa", "salon", "massage", "barber", "haircut", "nails", "beauty",
    ],
    "other": [
        "amazon", "ebay", "walmart", "target", "best buy", "apple",
        "microsoft", "google", "paypal", "venmo", "cash app", "zelle",
        "atm", "withdrawal", "transfer", "payment", "purchase", "misc",
    ],
}
