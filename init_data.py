from decimal import Decimal
from storefront import create_app
from storefront.extensions import db
from storefront.models import (
    ExpenseCategory,
    Product,
    ProductStatus,
    ProductVariant,
    Supplier,
    User,
    UserRole,
)

app = create_app()

with app.app_context():
    db.create_all()

    # Create admin account (if not exists)
    admin_email = "admin@example.com"
    admin = User.query.filter_by(email=admin_email).first()
    if not admin:
        admin = User(email=admin_email, name="Admin", role=UserRole.ADMIN)
        admin.set_password("admin12345")
        db.session.add(admin)
        print(f"Created admin account: {admin_email} / admin12345")

    customer_email = "customer@example.com"
    customer = User.query.filter_by(email=customer_email).first()
    if not customer:
        customer = User(
            email=customer_email, name="Sample Customer",
            role=UserRole.CUSTOMER
        )
        customer.set_password("customer123")
        db.session.add(customer)
        print(f"Created customer account: {customer_email} / customer123")

    products_data = [
        {
            "name": "Custom Art Print",
            "slug": "custom-art-print",
            "description": "Giclee print of your own design on archival paper.",
            "base_price": "24.99",
            "variants": [
                {"name": "A4 Matte", "size": "A4", "finish": "Matte",
                 "material": "Archival paper", "price": "24.99"},
                {"name": "A3 Matte", "size": "A3", "finish": "Matte",
                 "material": "Archival paper", "price": "34.99"},
                {"name": "A3 Gloss", "size": "A3", "finish": "Gloss",
                 "material": "Archival paper", "price": "36.99"},
            ],
        },
        {
            "name": "Framed Canvas",
            "slug": "framed-canvas",
            "description": "Stretched canvas in an oak frame.",
            "base_price": "59.00",
            "variants": [
                {"name": "30x40 Oak", "size": "30x40cm", "color": "Oak",
                 "material": "Canvas", "price": "59.00"},
                {"name": "50x70 Black", "size": "50x70cm", "color": "Black",
                 "material": "Canvas", "price": "89.00"},
            ],
        },
        {
            "name": "Photo Mug",
            "slug": "photo-mug",
            "description": "Ceramic mug printed with your photo.",
            "base_price": "12.50",
            "variants": [],
        },
    ]

    for product_data in products_data:
        if Product.query.filter_by(slug=product_data["slug"]).first():
            continue
        product = Product(
            name=product_data["name"],
            slug=product_data["slug"],
            description=product_data["description"],
            base_price=Decimal(product_data["base_price"]),
            status=ProductStatus.ACTIVE,
        )
        db.session.add(product)
        db.session.flush()

        for variant_data in product_data["variants"]:
            variant_data = dict(variant_data, price=Decimal(variant_data["price"]))
            db.session.add(ProductVariant(product_id=product.id, **variant_data))

        print(f"  Created product: {product_data['name']}")

    suppliers = ["Paper Supplies Ltd", "Frame Works", "Royal Mail"]
    for name in suppliers:
        if not Supplier.query.filter_by(name=name).first():
            db.session.add(Supplier(name=name))
            print(f"  Created supplier: {name}")

    db.session.commit()
    print(
        "Expense categories: "
        + ", ".join(c.value for c in ExpenseCategory)
    )
    print("Data initialization completed!")
