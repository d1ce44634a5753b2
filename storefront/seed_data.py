import logging
from decimal import Decimal
from typing import List

from storefront.records import ProductRecord

logger = logging.getLogger(__name__)

# Sample product templates: (id, name, description, category, subcategory, price, opensource)
SAMPLE_PRODUCTS = [
    ("p-portfolio", "Developer Portfolio Kit", "Responsive portfolio template with dark mode", "html-css-js", "Portfolio", "29.99", False),
    ("p-dashboard", "Admin Dashboard UI", "Component-based admin dashboard layout", "html-css-js", "UI/UX & Design", "39.99", False),
    ("p-todo", "Todo Web App", "Vanilla JS todo app with local persistence", "html-css-js", "Web Apps", "10.00", False),
    ("p-snake", "Snake Game", "Canvas snake game with high scores", "html-css-js", "Games & Fun", "9.99", False),
    ("p-shopfront", "Shopfront Template", "Single-page e-commerce template", "html-css-js", "E-commerce", "49.99", False),
    ("p-scraper", "Price Scraper", "Requests and BeautifulSoup price tracker", "python", "Automation", "19.99", False),
    ("p-flask-blog", "Flask Blog", "Flask blog with auth and markdown posts", "python", "Web/Backend", "24.99", False),
    ("p-pandas-report", "Sales Report Notebook", "pandas sales analysis with charts", "python", "Data & Analytics", "14.99", False),
    ("p-digit-cnn", "Digit Classifier", "Small CNN trained on handwritten digits", "python", "AI/ML", "34.99", False),
    ("p-quiz", "Console Quiz", "Beginner quiz game in the terminal", "python", "Beginner", "4.99", False),
    ("p-landing", "Landing Page Starter", "Free landing page template", "opensource", "Web Templates", "0", True),
    ("p-renamer", "Bulk File Renamer", "Free script to rename files by pattern", "opensource", "Python Scripts", "0", True),
]


def sample_products() -> List[ProductRecord]:
    """Fixture products for the offline catalog."""
    products = []
    for product_id, name, description, category, subcategory, price, opensource in SAMPLE_PRODUCTS:
        products.append(
            ProductRecord(
                id=product_id,
                name=name,
                description=description,
                main_category=category,
                subcategory=subcategory,
                price=Decimal(price),
                images=[f"https://cdn.example.com/{product_id}/cover.jpg"],
                download_url=f"https://cdn.example.com/{product_id}/source.zip",
                is_opensource=opensource,
                status="active",
            )
        )
    logger.debug(f"Loaded {len(products)} sample products")
    return products
