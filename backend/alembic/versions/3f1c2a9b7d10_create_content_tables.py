"""create users, products and articles

Revision ID: 3f1c2a9b7d10
Revises:
Create Date: 2026-10-19 10:40:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9b7d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('username', sa.String(length=50), nullable=False, comment='Login name'),
        sa.Column('password', sa.String(length=100), nullable=False, comment='bcrypt hash'),
        sa.Column('email', sa.String(length=100), nullable=False, comment='User email'),
        sa.Column('role', sa.String(length=20), nullable=False, comment='admin or editor'),
        sa.Column('status', sa.Boolean(), nullable=False, comment='Disabled accounts cannot log in'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='CMS accounts',
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('cover', sa.String(length=255), nullable=False, comment='Cover image URL'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('stars', sa.Integer(), nullable=False, comment='Rating 0-5'),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('images', sa.JSON(), nullable=False, comment='[{url, order}]'),
        sa.Column('view_count', sa.Integer(), nullable=False),
        sa.Column('status', sa.Boolean(), nullable=False, comment='Published flag'),
        sa.Column('featured', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='Portfolio items',
    )
    op.create_index('ix_products_status_date', 'products', ['status', 'date'])
    op.create_index('ix_products_featured', 'products', ['featured'])

    op.create_table(
        'articles',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('cover', sa.String(length=255), nullable=False, comment='Cover image URL'),
        sa.Column('content', sa.Text(), nullable=False, comment='HTML produced by the rich-text editor'),
        sa.Column('status', sa.Boolean(), nullable=False, comment='Published flag'),
        sa.Column('view_count', sa.Integer(), nullable=False),
        sa.Column('is_featured', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='Blog articles',
    )
    op.create_index('ix_articles_status_created', 'articles', ['status', 'created_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_articles_status_created', table_name='articles')
    op.drop_table('articles')
    op.drop_index('ix_products_featured', table_name='products')
    op.drop_index('ix_products_status_date', table_name='products')
    op.drop_table('products')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_index('ix_users_username', table_name='users')
    op.drop_table('users')
