import random
from datetime import timedelta
from typing import Dict, List

import click
from flask import current_app

from .audit import record_audit_log
from .extensions import mongo
from .helpers import round_money, utcnow
from .security import ROLE_ADMIN, ROLE_USER, hash_password

PRODUCTS_PER_CATEGORY = 20
DEFAULT_SEED_PASSWORD = "Admin123!"

SEED_USERS = (
    {"name": "Admin User", "email": "admin@example.com", "role": ROLE_ADMIN},
    {"name": "Regular User", "email": "user@example.com", "role": ROLE_USER},
)

SEED_CATEGORIES = (
    {
        "name": "Electronics",
        "image": "https://images.unsplash.com/photo-1498049794561-7780e7231661?w=800",
        "description": "Latest gadgets and electronic devices",
    },
    {
        "name": "Fashion",
        "image": "https://images.unsplash.com/photo-1445205170230-053b83016050?w=800",
        "description": "Trendy clothing and accessories",
    },
    {
        "name": "Home & Living",
        "image": "https://images.unsplash.com/photo-1484101403633-562f891dc89a?w=800",
        "description": "Furniture and home decor",
    },
    {
        "name": "Sports & Outdoors",
        "image": "https://images.unsplash.com/photo-1461896836934-ffe607ba8211?w=800",
        "description": "Sports equipment and outdoor gear",
    },
    {
        "name": "Beauty & Health",
        "image": "https://images.unsplash.com/photo-1612817288484-6f916006741a?w=800",
        "description": "Beauty products and health essentials",
    },
)

BASE_PRODUCTS: Dict[str, List[Dict]] = {
    "Electronics": [
        {
            "name": "Premium Smartphone X",
            "description": "Latest flagship smartphone with advanced camera system",
            "main_image": "https://images.unsplash.com/photo-1511707171634-5f897ff02aa9?w=800",
            "images": [
                "https://images.unsplash.com/photo-1592750475338-74b7b21085ab?w=800",
                "https://images.unsplash.com/photo-1610945415295-d9bbf067e59c?w=800",
            ],
            "buy_price": 699,
            "sell_price": 999.99,
            "is_on_flash": True,
            "stock": 50,
            "is_featured": True,
        },
        {
            "name": "Ultra Slim Laptop Pro",
            "description": "Powerful laptop for professionals",
            "main_image": "https://images.unsplash.com/photo-1496181133206-80ce9b88a853?w=800",
            "images": [
                "https://images.unsplash.com/photo-1504707748692-419802cf939d?w=800",
                "https://images.unsplash.com/photo-1517336714731-489689fd1ca8?w=800",
            ],
            "buy_price": 899,
            "sell_price": 1299.99,
            "stock": 30,
            "is_featured": True,
        },
    ],
    "Fashion": [
        {
            "name": "Classic Leather Jacket",
            "description": "Premium leather jacket for men",
            "main_image": "https://images.unsplash.com/photo-1551028719-00167b16eac5?w=800",
            "images": [
                "https://images.unsplash.com/photo-1509957228579-c67a3298ad21?w=800",
                "https://images.unsplash.com/photo-1521223890158-f9f7c3d5d504?w=800",
            ],
            "buy_price": 150,
            "sell_price": 299.99,
            "is_on_flash": True,
            "stock": 40,
            "is_featured": True,
        },
        {
            "name": "Designer Summer Dress",
            "description": "Elegant summer dress for women",
            "main_image": "https://images.unsplash.com/photo-1496747611176-843222e1e57c?w=800",
            "images": [
                "https://images.unsplash.com/photo-1495385794356-15371f348c31?w=800",
                "https://images.unsplash.com/photo-1515372039744-b8f02a3ae446?w=800",
            ],
            "buy_price": 89,
            "sell_price": 179.99,
            "stock": 60,
        },
    ],
    "Home & Living": [
        {
            "name": "Modern Sofa Set",
            "description": "Contemporary 3-seater sofa with ottoman",
            "main_image": "https://images.unsplash.com/photo-1555041469-a586c61ea9bc?w=800",
            "images": [
                "https://images.unsplash.com/photo-1493663284031-b7e3aefcae8e?w=800",
                "https://images.unsplash.com/photo-1484101403633-562f891dc89a?w=800",
            ],
            "buy_price": 799,
            "sell_price": 1499.99,
            "is_on_flash": True,
            "stock": 15,
            "is_featured": True,
        },
        {
            "name": "Premium Coffee Maker",
            "description": "Professional grade coffee machine",
            "main_image": "https://images.unsplash.com/photo-1495474472287-4d71bcdd2085?w=800",
            "images": [
                "https://images.unsplash.com/photo-1510707577719-ae7c14805e3a?w=800",
                "https://images.unsplash.com/photo-1522012188892-24beb302783d?w=800",
            ],
            "buy_price": 199,
            "sell_price": 399.99,
            "stock": 25,
        },
    ],
    "Sports & Outdoors": [
        {
            "name": "Smart Fitness Watch",
            "description": "Advanced fitness tracker with heart rate monitoring",
            "main_image": "https://images.unsplash.com/photo-1557166983-5939644443a3?w=800",
            "images": [
                "https://images.unsplash.com/photo-1557166877-7a7b05bb108c?w=800",
            ],
            "buy_price": 129,
            "sell_price": 249.99,
            "is_on_flash": True,
            "stock": 100,
            "is_featured": True,
        },
    ],
    "Beauty & Health": [
        {
            "name": "Premium Skincare Set",
            "description": "Complete skincare routine package",
            "main_image": "https://images.unsplash.com/photo-1556228720-195a672e8a03?w=800",
            "images": [
                "https://images.unsplash.com/photo-1556228841-a3c527ebefe5?w=800",
                "https://images.unsplash.com/photo-1556228578-0d85b1a4d571?w=800",
            ],
            "buy_price": 89,
            "sell_price": 179.99,
            "is_on_flash": True,
            "stock": 75,
            "is_featured": True,
        },
    ],
}

SEED_PROMO_CODES = (
    {
        "code": "WELCOME10",
        "description": "Get 10% off on your first purchase",
        "percentage": 10,
        "valid_days": 30,
    },
    {
        "code": "SUMMER20",
        "description": "Summer special discount",
        "percentage": 20,
        "valid_days": 15,
    },
)

# title, description, banner, is_active
SEED_PROMOTIONS = (
    ("Summer Sale", "Get up to 50% off on summer collection",
     "https://images.unsplash.com/photo-1555529669-e69e7aa0ba9a?w=1000", True),
    ("Flash Deals", "Limited time offers on premium products",
     "https://images.unsplash.com/photo-1472851294608-062f824d29cc?w=1000", True),
    ("Black Friday", "Biggest sale of the year - Up to 70% off",
     "https://images.unsplash.com/photo-1607083206869-4c7672e72a8a?w=1000", True),
    ("Tech Bonanza", "Amazing deals on latest gadgets",
     "https://images.unsplash.com/photo-1519389950473-47ba0277781c?w=1000", True),
    ("Fashion Week Special", "Exclusive discounts on designer brands",
     "https://images.unsplash.com/photo-1490481651871-ab68de25d43d?w=1000", True),
    ("Home Makeover Sale", "Transform your space with incredible offers",
     "https://images.unsplash.com/photo-1556228453-efd6c1ff04f6?w=1000", True),
    ("Sports & Fitness", "Get fit with amazing deals on sports equipment",
     "https://images.unsplash.com/photo-1517836357463-d25dfeac3438?w=1000", True),
    ("Beauty Essentials", "Special offers on premium beauty products",
     "https://images.unsplash.com/photo-1522335789203-aabd1fc54bc9?w=1000", True),
    ("Clearance Sale", "Last chance to grab your favorites",
     "https://images.unsplash.com/photo-1607082349566-187342175e2f?w=1000", False),
    ("New Year Special", "Start your year with amazing deals",
     "https://images.unsplash.com/photo-1467810563316-b5476525c0f9?w=1000", False),
)


def expand_products(base_products: List[Dict], rng: random.Random) -> List[Dict]:
    """Pad ``base_products`` to a full category with randomized variants."""
    products = [dict(product) for product in base_products]
    for index in range(PRODUCTS_PER_CATEGORY - len(base_products)):
        base = base_products[index % len(base_products)]
        buy_price = round_money(base["buy_price"] * (0.8 + rng.random() * 0.4))
        sell_price = round_money(base["sell_price"] * (0.8 + rng.random() * 0.4))
        if sell_price <= buy_price:
            sell_price = round_money(buy_price * 1.25)
        products.append(
            {
                **base,
                "name": f"{base['name']} {index + 1}",
                "buy_price": buy_price,
                "sell_price": sell_price,
                "is_on_flash": rng.random() > 0.8,
                "is_featured": rng.random() > 0.8,
                "stock": rng.randint(10, 109),
            }
        )
    return products


def seed_database(password: str = DEFAULT_SEED_PASSWORD, rng=None) -> Dict[str, int]:
    """Replace catalog, users and marketing data with demo content."""
    rng = rng or random.Random()
    db = mongo.db
    for collection in (db.users, db.categories, db.products, db.promo_codes, db.promotions):
        collection.delete_many({})

    timestamp = utcnow()
    hashed_password = hash_password(password)
    user_documents = [
        {
            **user,
            "password": hashed_password,
            "is_active": True,
            "cart": [],
            "wishlist": [],
            "created_at": timestamp,
            "updated_at": timestamp,
        }
        for user in SEED_USERS
    ]
    db.users.insert_many(user_documents)

    product_documents = []
    for category in SEED_CATEGORIES:
        category_id = db.categories.insert_one(
            {**category, "created_at": timestamp, "updated_at": timestamp}
        ).inserted_id
        for product in expand_products(BASE_PRODUCTS[category["name"]], rng):
            is_on_flash = bool(product.get("is_on_flash"))
            product_documents.append(
                {
                    "name": product["name"],
                    "description": product["description"],
                    "main_image": product["main_image"],
                    "images": list(product.get("images") or []),
                    "category": category_id,
                    "is_on_stock": True,
                    "stock": product["stock"],
                    "buy_price": round_money(product["buy_price"]),
                    "sell_price": round_money(product["sell_price"]),
                    "is_on_flash": is_on_flash,
                    "flash_price": round_money(product["sell_price"] * 0.8) if is_on_flash else None,
                    "is_featured": bool(product.get("is_featured")),
                    "created_at": timestamp,
                    "updated_at": timestamp,
                }
            )
    db.products.insert_many(product_documents)

    db.promo_codes.insert_many(
        [
            {
                "code": promo["code"],
                "description": promo["description"],
                "percentage": promo["percentage"],
                "is_active": True,
                "expiry_date": timestamp + timedelta(days=promo["valid_days"]),
                "created_at": timestamp,
                "updated_at": timestamp,
            }
            for promo in SEED_PROMO_CODES
        ]
    )

    db.promotions.insert_many(
        [
            {
                "title": title,
                "description": description,
                "banner_img": banner,
                "is_active": is_active,
                "created_at": timestamp,
                "updated_at": timestamp,
            }
            for title, description, banner, is_active in SEED_PROMOTIONS
        ]
    )

    summary = {
        "users": len(user_documents),
        "categories": len(SEED_CATEGORIES),
        "products": len(product_documents),
        "promo_codes": len(SEED_PROMO_CODES),
        "promotions": len(SEED_PROMOTIONS),
    }
    record_audit_log(None, "Seeded database", summary)
    current_app.logger.info("Seeded database: %s", summary)
    return summary


def register_seed_command(app):
    @app.cli.command("seed")
    @click.option(
        "--password",
        default=DEFAULT_SEED_PASSWORD,
        show_default=True,
        help="Password given to the seeded accounts.",
    )
    def seed_command(password):
        """Wipe the store and load demo data."""
        summary = seed_database(password=password)
        for name, count in summary.items():
            click.echo(f"{name}: {count}")
        click.echo("Database seeded successfully!")
