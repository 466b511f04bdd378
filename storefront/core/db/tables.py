"""
Storefront schema as one ordered list of idempotent statements.

Bump SCHEMA_VERSION whenever SCHEMA_STATEMENTS changes; statements are only
ever appended or made more permissive, since every one of them is re-run on a
fresh install.
"""

SCHEMA_VERSION = 1

_TABLE_OPTIONS = "ENGINE=InnoDB CHARSET=utf8mb4 COLLATE=utf8mb4_general_ci"

ROLES = f"""
CREATE TABLE IF NOT EXISTS roles (
    id INT AUTO_INCREMENT PRIMARY KEY,
    role_name VARCHAR(50) NOT NULL UNIQUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP
) {_TABLE_OPTIONS} COMMENT='Roles'
"""

USERS = f"""
CREATE TABLE IF NOT EXISTS users (
    id INT AUTO_INCREMENT PRIMARY KEY,
    name VARCHAR(255) NOT NULL,
    email VARCHAR(255) NOT NULL UNIQUE,
    password VARCHAR(255) NOT NULL,
    role VARCHAR(50) NOT NULL DEFAULT 'user',
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
    INDEX idx_email (email)
) {_TABLE_OPTIONS} COMMENT='User accounts'
"""

STAFF_ACCOUNTS = f"""
CREATE TABLE IF NOT EXISTS staff_accounts (
    staff_id INT AUTO_INCREMENT PRIMARY KEY,
    role_id INT NOT NULL,
    first_name VARCHAR(100) NOT NULL,
    last_name VARCHAR(100) NOT NULL,
    phone_number VARCHAR(20),
    email VARCHAR(255) NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    active BOOLEAN DEFAULT TRUE,
    is_verified BOOLEAN DEFAULT FALSE,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
    deleted_at TIMESTAMP NULL,
    FOREIGN KEY (role_id) REFERENCES roles(id) ON DELETE RESTRICT,
    INDEX idx_email (email)
) {_TABLE_OPTIONS} COMMENT='Staff accounts'
"""

BRANDS = f"""
CREATE TABLE IF NOT EXISTS brands (
    brand_id INT AUTO_INCREMENT PRIMARY KEY,
    brand_name VARCHAR(255) NOT NULL,
    brand_image MEDIUMBLOB,
    created_by INT,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
    deleted_at TIMESTAMP NULL,
    FOREIGN KEY (created_by) REFERENCES users(id) ON DELETE SET NULL,
    INDEX idx_brand_name (brand_name)
) {_TABLE_OPTIONS}
"""

CATEGORIES = f"""
CREATE TABLE IF NOT EXISTS categories (
    category_id INT AUTO_INCREMENT PRIMARY KEY,
    category_name VARCHAR(255) NOT NULL,
    category_image MEDIUMBLOB,
    category_description VARCHAR(255) NOT NULL DEFAULT '',
    category_status ENUM('active', 'inactive') NOT NULL DEFAULT 'active',
    parent_category_id INT NULL,
    created_by INT,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
    deleted_at TIMESTAMP NULL,
    FOREIGN KEY (parent_category_id) REFERENCES categories(category_id) ON DELETE SET NULL,
    FOREIGN KEY (created_by) REFERENCES users(id) ON DELETE SET NULL,
    INDEX idx_category_name (category_name),
    INDEX idx_parent_category (parent_category_id)
) {_TABLE_OPTIONS}
"""

SUPPLIERS = f"""
CREATE TABLE IF NOT EXISTS suppliers (
    supplier_id INT AUTO_INCREMENT PRIMARY KEY,
    supplier_name VARCHAR(255) NOT NULL,
    supplier_email VARCHAR(255) NOT NULL UNIQUE,
    supplier_phone_number VARCHAR(20) NOT NULL,
    supplier_location VARCHAR(255) NOT NULL,
    created_by INT,
    created_at TIMESTAMP NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP NULL DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
    deleted_at TIMESTAMP NULL,
    FOREIGN KEY (created_by) REFERENCES users(id) ON DELETE SET NULL,
    INDEX idx_supplier_name (supplier_name)
) {_TABLE_OPTIONS}
"""

PRODUCTS = f"""
CREATE TABLE IF NOT EXISTS products (
    product_id INT AUTO_INCREMENT PRIMARY KEY,
    product_name VARCHAR(255) NOT NULL,
    product_sku VARCHAR(255) NOT NULL UNIQUE,
    product_description TEXT,
    long_description TEXT,
    product_price DECIMAL(10, 2) NOT NULL,
    product_discount DECIMAL(10, 2) DEFAULT 0.00,
    product_quantity INT DEFAULT 0,
    product_status ENUM('draft', 'pending', 'approved') DEFAULT 'draft',
    category_id INT NOT NULL,
    subcategory_id INT NULL,
    brand_id INT,
    created_by INT,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
    deleted_at TIMESTAMP NULL,
    FOREIGN KEY (category_id) REFERENCES categories(category_id) ON DELETE CASCADE,
    FOREIGN KEY (subcategory_id) REFERENCES categories(category_id) ON DELETE CASCADE,
    FOREIGN KEY (brand_id) REFERENCES brands(brand_id) ON DELETE SET NULL,
    FOREIGN KEY (created_by) REFERENCES users(id) ON DELETE SET NULL,
    INDEX idx_product_name (product_name),
    INDEX idx_category (category_id),
    INDEX idx_brand (brand_id),
    INDEX idx_status (product_status)
) {_TABLE_OPTIONS}
"""

PRODUCT_SUPPLIERS = f"""
CREATE TABLE IF NOT EXISTS product_suppliers (
    product_id INT NOT NULL,
    supplier_id INT NOT NULL,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (product_id, supplier_id),
    FOREIGN KEY (product_id) REFERENCES products(product_id) ON DELETE CASCADE,
    FOREIGN KEY (supplier_id) REFERENCES suppliers(supplier_id) ON DELETE CASCADE,
    INDEX idx_supplier_id (supplier_id)
) {_TABLE_OPTIONS}
"""

SPECIFICATIONS = f"""
CREATE TABLE IF NOT EXISTS specifications (
    specification_id INT AUTO_INCREMENT PRIMARY KEY,
    specification_name VARCHAR(255) NOT NULL UNIQUE,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP
) {_TABLE_OPTIONS}
"""

CATEGORY_SPECIFICATIONS = f"""
CREATE TABLE IF NOT EXISTS category_specifications (
    category_spec_id INT AUTO_INCREMENT PRIMARY KEY,
    category_id INT NOT NULL,
    specification_id INT NOT NULL,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE KEY uq_category_spec (category_id, specification_id),
    FOREIGN KEY (category_id) REFERENCES categories(category_id) ON DELETE CASCADE,
    FOREIGN KEY (specification_id) REFERENCES specifications(specification_id) ON DELETE CASCADE
) {_TABLE_OPTIONS}
"""

TAGS = f"""
CREATE TABLE IF NOT EXISTS tags (
    tag_id INT AUTO_INCREMENT PRIMARY KEY,
    tag_name VARCHAR(255) NOT NULL,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
    INDEX idx_tag_name (tag_name)
) {_TABLE_OPTIONS}
"""

PRODUCT_TAGS = f"""
CREATE TABLE IF NOT EXISTS product_tags (
    product_tag_id INT AUTO_INCREMENT PRIMARY KEY,
    product_id INT NOT NULL,
    tag_id INT NOT NULL,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE KEY uq_product_tag (product_id, tag_id),
    FOREIGN KEY (product_id) REFERENCES products(product_id) ON DELETE CASCADE,
    FOREIGN KEY (tag_id) REFERENCES tags(tag_id) ON DELETE CASCADE,
    INDEX idx_tag_id (tag_id)
) {_TABLE_OPTIONS}
"""

ORDER_STATUSES = f"""
CREATE TABLE IF NOT EXISTS order_statuses (
    order_status_id INT AUTO_INCREMENT PRIMARY KEY,
    status_name VARCHAR(255) NOT NULL UNIQUE,
    color VARCHAR(7) NOT NULL,
    privacy ENUM('public', 'private') NOT NULL DEFAULT 'private',
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP
) {_TABLE_OPTIONS}
"""

SEED_ROLES = """
INSERT IGNORE INTO roles (role_name) VALUES ('super_admin'), ('admin'), ('user')
"""

SEED_ORDER_STATUSES = """
INSERT IGNORE INTO order_statuses (status_name, color, privacy) VALUES
    ('pending', '#F59E0B', 'public'),
    ('paid', '#3B82F6', 'public'),
    ('shipped', '#8B5CF6', 'public'),
    ('delivered', '#10B981', 'public'),
    ('cancelled', '#EF4444', 'public')
"""

# Ordered so every foreign key target exists before the table referencing it
SCHEMA_STATEMENTS = [
    ROLES,
    USERS,
    STAFF_ACCOUNTS,
    BRANDS,
    CATEGORIES,
    SUPPLIERS,
    PRODUCTS,
    PRODUCT_SUPPLIERS,
    SPECIFICATIONS,
    CATEGORY_SPECIFICATIONS,
    TAGS,
    PRODUCT_TAGS,
    ORDER_STATUSES,
    SEED_ROLES,
    SEED_ORDER_STATUSES,
]

__all__ = ["SCHEMA_VERSION", "SCHEMA_STATEMENTS"]
