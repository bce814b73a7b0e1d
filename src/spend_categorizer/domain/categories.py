from spend_categorizer.models import Category

UNCATEGORIZED = "uncategorized"
FOOD = "food"
GROCERIES = "groceries"
RESTAURANTS = "restaurants"
TRANSPORT = "transport"
GAS = "gas"
PUBLIC_TRANSIT = "public_transit"
SHOPPING = "shopping"
ENTERTAINMENT = "entertainment"
BILLS = "bills"
HYDRO = "hydro"
INTERNET = "internet"
HEALTHCARE = "healthcare"
EDUCATION = "education"
TRAVEL = "travel"
INCOME = "income"
SALARY = "salary"
INVESTMENT = "investment"
RRSP = "rrsp"
TFSA = "tfsa"


def _builtin(
    category_id: str,
    name: str,
    color: str,
    parent_id: str | None = None,
    icon: str | None = None,
) -> Category:
    return Category(
        id=category_id,
        name=name,
        parent_id=parent_id,
        color=color,
        icon=icon,
        is_builtin=True,
    )


def default_categories() -> list[Category]:
    """Built-in taxonomy, parents listed before their children."""
    return [
        _builtin(UNCATEGORIZED, "Uncategorized", "#9E9E9E", icon="help"),
        _builtin(FOOD, "Food & Dining", "#FF9800", icon="restaurant"),
        _builtin(GROCERIES, "Groceries", "#FFC107", parent_id=FOOD, icon="cart"),
        _builtin(RESTAURANTS, "Restaurants", "#FF5722", parent_id=FOOD, icon="coffee"),
        _builtin(TRANSPORT, "Transportation", "#2196F3", icon="car"),
        _builtin(GAS, "Gas & Fuel", "#1976D2", parent_id=TRANSPORT, icon="fuel"),
        _builtin(PUBLIC_TRANSIT, "Public Transit", "#03A9F4", parent_id=TRANSPORT, icon="bus"),
        _builtin(SHOPPING, "Shopping", "#E91E63", icon="bag"),
        _builtin(ENTERTAINMENT, "Entertainment", "#9C27B0", icon="movie"),
        _builtin(BILLS, "Bills & Utilities", "#607D8B", icon="receipt"),
        _builtin(HYDRO, "Hydro/Electricity", "#455A64", parent_id=BILLS, icon="bolt"),
        _builtin(INTERNET, "Internet & Phone", "#546E7A", parent_id=BILLS, icon="wifi"),
        _builtin(HEALTHCARE, "Healthcare", "#4CAF50", icon="health"),
        _builtin(EDUCATION, "Education", "#FF9800", icon="school"),
        _builtin(TRAVEL, "Travel", "#00BCD4", icon="plane"),
        _builtin(INCOME, "Income", "#4CAF50", icon="wallet"),
        _builtin(SALARY, "Salary", "#388E3C", parent_id=INCOME, icon="briefcase"),
        _builtin(INVESTMENT, "Investment", "#795548", icon="chart"),
        _builtin(RRSP, "RRSP Contribution", "#5D4037", parent_id=INVESTMENT, icon="savings"),
        _builtin(TFSA, "TFSA Contribution", "#6D4C41", parent_id=INVESTMENT, icon="savings"),
    ]
