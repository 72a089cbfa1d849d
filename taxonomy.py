from typing import Iterable

# Top-level category -> every label that counts toward it (itself included).
CATEGORY_MAP: dict[str, list[str]] = {
    "Food & Dining": [
        "Food & Dining",
        "Restaurants",
        "Groceries",
        "Takeout",
        "Coffee & Tea",
        "Alcohol & Bars",
    ],
    "Transportation": [
        "Transportation",
        "Gas & Fuel",
        "Parking",
        "Car Maintenance",
        "Public Transport",
        "Taxi & Rideshare",
    ],
    "Shopping": [
        "Shopping",
        "Clothing",
        "Electronics",
        "Books",
        "Gifts",
        "Home & Garden",
    ],
    "Entertainment": [
        "Entertainment",
        "Movies & Shows",
        "Music",
        "Games",
        "Sports",
        "Travel",
    ],
    "Bills & Utilities": [
        "Bills & Utilities",
        "Rent",
        "Electricity",
        "Water",
        "Internet",
        "Phone",
        "Insurance",
    ],
    "Healthcare": [
        "Healthcare",
        "Doctor",
        "Pharmacy",
        "Dental",
        "Vision",
        "Medical Equipment",
    ],
    "Personal Care": [
        "Personal Care",
        "Salon & Spa",
        "Gym & Fitness",
        "Personal Items",
    ],
    "Business": [
        "Business",
        "Office Supplies",
        "Business Travel",
        "Professional Services",
    ],
    "Education": [
        "Education",
        "Tuition",
        "Books & Supplies",
        "Online Courses",
    ],
    "Income": [
        "Income",
        "Salary",
        "Freelance",
        "Investment",
        "Business",
        "Other Income",
    ],
    "Transfer": [
        "Transfer",
        "Account Transfer",
        "Payment",
        "Withdrawal",
    ],
    "Other": [
        "Other",
        "Miscellaneous",
        "Uncategorized",
    ],
}


def expand_categories(categories: Iterable[str]) -> list[str]:
    """Expand top-level names to their subcategory labels.

    Names without a taxonomy entry are kept literally. Order follows the
    input and duplicates are dropped.
    """
    expanded: list[str] = []
    seen: set[str] = set()
    for category in categories:
        for label in CATEGORY_MAP.get(category, [category]):
            if label not in seen:
                seen.add(label)
                expanded.append(label)
    return expanded
