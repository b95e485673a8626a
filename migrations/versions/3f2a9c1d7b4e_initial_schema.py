from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3f2a9c1d7b4e"
down_revision = None
branch_labels = None
depends_on = None


userrole = sa.Enum("CUSTOMER", "ADMIN", name="userrole")
productstatus = sa.Enum("DRAFT", "ACTIVE", "ARCHIVED", name="productstatus")
orderstatus = sa.Enum(
    "PENDING",
    "PAYMENT_CONFIRMED",
    "CONFIRMED",
    "PRINTING",
    "SHIPPED",
    "DELIVERED",
    "CANCELLATION_REQUESTED",
    "CANCELLED",
    "REFUNDED",
    name="orderstatus",
)
paymentstatus = sa.Enum(
    "PENDING", "COMPLETED", "FAILED", "REFUNDED", name="paymentstatus"
)
paymentmethod = sa.Enum("MOCK", "CARD", name="paymentmethod")
issuestatus = sa.Enum(
    "SUBMITTED",
    "AWAITING_REVIEW",
    "INFO_REQUESTED",
    "APPROVED_REPRINT",
    "APPROVED_REFUND",
    "PROCESSING",
    "COMPLETED",
    "REJECTED",
    "CLOSED",
    name="issuestatus",
)
issuereason = sa.Enum(
    "DAMAGED_IN_TRANSIT",
    "QUALITY_ISSUE",
    "WRONG_ITEM",
    "PRINTING_ERROR",
    "NEVER_ARRIVED",
    "OTHER",
    name="issuereason",
)
carrierfault = sa.Enum(
    "UNKNOWN", "CARRIER_FAULT", "NOT_CARRIER_FAULT", name="carrierfault"
)
claimstatus = sa.Enum(
    "NOT_FILED",
    "SUBMITTED",
    "UNDER_REVIEW",
    "APPROVED",
    "REJECTED",
    "PAID",
    name="claimstatus",
)
issueresolvedtype = sa.Enum(
    "REPRINT", "FULL_REFUND", "PARTIAL_REFUND", name="issueresolvedtype"
)
messagesender = sa.Enum("CUSTOMER", "ADMIN", name="messagesender")
resolutiontype = sa.Enum("REPRINT", "REFUND", name="resolutiontype")
resolutionstatus = sa.Enum(
    "PENDING", "PROCESSING", "COMPLETED", "FAILED", name="resolutionstatus"
)
expensecategory = sa.Enum(
    "MATERIALS",
    "PACKAGING",
    "SHIPPING_SUPPLIES",
    "EQUIPMENT",
    "SOFTWARE",
    "UTILITIES",
    "MARKETING",
    "OTHER",
    name="expensecategory",
)
importsource = sa.Enum("MANUAL", "CSV_IMPORT", "REPRINT", name="importsource")
importbatchstatus = sa.Enum(
    "PROCESSING", "COMPLETED", "FAILED", name="importbatchstatus"
)


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", userrole, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("base_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", productstatus, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "base_price >= 0", name="check_base_price_non_negative"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_products_slug", "products", ["slug"], unique=True)
    op.create_index("ix_products_status", "products", ["status"])

    op.create_table(
        "product_variants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("size", sa.String(length=50), nullable=True),
        sa.Column("color", sa.String(length=50), nullable=True),
        sa.Column("material", sa.String(length=50), nullable=True),
        sa.Column("finish", sa.String(length=50), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(
            ["product_id"], ["products.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_product_variants_product_id", "product_variants", ["product_id"]
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("status", orderstatus, nullable=False),
        sa.Column("subtotal", sa.Numeric(10, 2), nullable=False),
        sa.Column("shipping_cost", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("shipping_address_json", sa.Text(), nullable=True),
        sa.Column("carrier", sa.String(length=50), nullable=True),
        sa.Column("tracking_number", sa.String(length=100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("shipped_at", sa.DateTime(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["customer_id"], ["users.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_orders_customer_id", "orders", ["customer_id"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_created_at", "orders", ["created_at"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("variant_id", sa.Integer(), nullable=True),
        sa.Column("design_ref", sa.String(length=255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("customization_json", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "quantity > 0", name="check_order_quantity_positive"
        ),
        sa.ForeignKeyConstraint(
            ["order_id"], ["orders.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["product_id"], ["products.id"], ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(
            ["variant_id"], ["product_variants.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", paymentstatus, nullable=False),
        sa.Column("method", paymentmethod, nullable=False),
        sa.Column(
            "provider_payment_id", sa.String(length=100), nullable=True
        ),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("refunded_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["order_id"], ["orders.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id"),
    )
    op.create_index(
        "ix_payments_provider_payment_id", "payments", ["provider_payment_id"]
    )

    op.create_table(
        "issues",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("order_item_id", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=False),
        sa.Column("reason", issuereason, nullable=False),
        sa.Column("status", issuestatus, nullable=False),
        sa.Column("initial_notes", sa.Text(), nullable=True),
        sa.Column("image_urls_json", sa.Text(), nullable=True),
        sa.Column("carrier_fault", carrierfault, nullable=False),
        sa.Column("claim_status", claimstatus, nullable=False),
        sa.Column("claim_reference", sa.String(length=100), nullable=True),
        sa.Column("claim_submitted_at", sa.DateTime(), nullable=True),
        sa.Column("claim_payout_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("claim_paid_at", sa.DateTime(), nullable=True),
        sa.Column("claim_notes", sa.Text(), nullable=True),
        sa.Column("resolved_type", issueresolvedtype, nullable=True),
        sa.Column("reprint_order_id", sa.Integer(), nullable=True),
        sa.Column("reprint_item_id", sa.Integer(), nullable=True),
        sa.Column("refund_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("refund_reference", sa.String(length=100), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("rejection_final", sa.Boolean(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("closed_at", sa.DateTime(), nullable=True),
        sa.Column("is_concluded", sa.Boolean(), nullable=False),
        sa.Column("concluded_at", sa.DateTime(), nullable=True),
        sa.Column("concluded_by", sa.Integer(), nullable=True),
        sa.Column("concluded_reason", sa.Text(), nullable=True),
        sa.Column("original_issue_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["order_id"], ["orders.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["order_item_id"], ["order_items.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["created_by"], ["users.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["reprint_order_id"], ["orders.id"], ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(
            ["concluded_by"], ["users.id"], ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(
            ["original_issue_id"], ["issues.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_item_id", name="uq_issue_order_item"),
    )
    op.create_index("ix_issues_order_id", "issues", ["order_id"])
    op.create_index("ix_issues_created_by", "issues", ["created_by"])
    op.create_index("ix_issues_status", "issues", ["status"])
    op.create_index("ix_issues_carrier_fault", "issues", ["carrier_fault"])
    op.create_index(
        "ix_issues_original_issue_id", "issues", ["original_issue_id"]
    )
    op.create_index("ix_issues_created_at", "issues", ["created_at"])

    op.create_table(
        "issue_messages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("issue_id", sa.Integer(), nullable=False),
        sa.Column("sender", messagesender, nullable=False),
        sa.Column("sender_id", sa.Integer(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("image_urls_json", sa.Text(), nullable=True),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["issue_id"], ["issues.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["sender_id"], ["users.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_issue_messages_issue_id", "issue_messages", ["issue_id"]
    )
    op.create_index(
        "ix_issue_messages_created_at", "issue_messages", ["created_at"]
    )

    op.create_table(
        "resolutions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("type", resolutiontype, nullable=False),
        sa.Column("reason", sa.String(length=50), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("image_urls_json", sa.Text(), nullable=True),
        sa.Column("status", resolutionstatus, nullable=False),
        sa.Column("reprint_order_id", sa.Integer(), nullable=True),
        sa.Column("refund_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("refund_reference", sa.String(length=100), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["order_id"], ["orders.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["reprint_order_id"], ["orders.id"], ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(
            ["created_by"], ["users.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_resolutions_order_id", "resolutions", ["order_id"])
    op.create_index("ix_resolutions_status", "resolutions", ["status"])

    op.create_table(
        "carts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )

    op.create_table(
        "cart_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cart_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("customization_json", sa.Text(), nullable=True),
        sa.Column("added_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="check_quantity_positive"),
        sa.ForeignKeyConstraint(["cart_id"], ["carts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["product_id"], ["products.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["variant_id"], ["product_variants.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_cart_items_cart_id", "cart_items", ["cart_id"])

    op.create_table(
        "suppliers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=True),
        sa.Column("website", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_suppliers_name", "suppliers", ["name"])

    op.create_table(
        "expense_import_batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("source", importsource, nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=True),
        sa.Column("record_count", sa.Integer(), nullable=False),
        sa.Column("success_count", sa.Integer(), nullable=False),
        sa.Column("error_count", sa.Integer(), nullable=False),
        sa.Column("status", importbatchstatus, nullable=False),
        sa.Column("errors_json", sa.Text(), nullable=True),
        sa.Column("imported_by", sa.Integer(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["imported_by"], ["users.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_expense_import_batches_created_at",
        "expense_import_batches",
        ["created_at"],
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("expense_number", sa.String(length=20), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("category", expensecategory, nullable=False),
        sa.Column("purchase_date", sa.Date(), nullable=False),
        sa.Column("supplier_id", sa.Integer(), nullable=True),
        sa.Column("external_reference", sa.String(length=100), nullable=True),
        sa.Column("vat_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("vat_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("is_vat_reclaimable", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("tax_year", sa.String(length=9), nullable=False),
        sa.Column("import_source", importsource, nullable=False),
        sa.Column("import_batch_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="check_expense_amount_positive"),
        sa.ForeignKeyConstraint(
            ["supplier_id"], ["suppliers.id"], ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(
            ["import_batch_id"],
            ["expense_import_batches.id"],
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_expenses_expense_number", "expenses", ["expense_number"],
        unique=True
    )
    op.create_index("ix_expenses_category", "expenses", ["category"])
    op.create_index("ix_expenses_purchase_date", "expenses", ["purchase_date"])
    op.create_index("ix_expenses_tax_year", "expenses", ["tax_year"])
    op.create_index(
        "ix_expenses_import_batch_id", "expenses", ["import_batch_id"]
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("actor_role", sa.String(length=20), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("target_type", sa.String(length=50), nullable=True),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("ip", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["actor_id"], ["users.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("expenses")
    op.drop_table("expense_import_batches")
    op.drop_table("suppliers")
    op.drop_table("cart_items")
    op.drop_table("carts")
    op.drop_table("resolutions")
    op.drop_table("issue_messages")
    op.drop_table("issues")
    op.drop_table("payments")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("product_variants")
    op.drop_table("products")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in (
        importbatchstatus,
        importsource,
        expensecategory,
        resolutionstatus,
        resolutiontype,
        messagesender,
        issueresolvedtype,
        claimstatus,
        carrierfault,
        issuereason,
        issuestatus,
        paymentmethod,
        paymentstatus,
        orderstatus,
        productstatus,
        userrole,
    ):
        enum_type.drop(bind, checkfirst=True)
