"""Initial schema for trial balance files

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-10-14

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create files table
    op.create_table(
        'files',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('filename', sa.String(length=255), nullable=False, comment='Original filename as uploaded'),
        sa.Column('size', sa.BigInteger(), nullable=False, comment='File size in bytes'),
        sa.Column('type', sa.String(length=255), nullable=True, comment='MIME type reported at upload'),
        sa.Column('category', sa.String(length=20), nullable=False, comment='excel or pdf'),
        sa.Column('url', sa.String(length=1024), nullable=True, comment='API download URL'),
        sa.Column('user_id', sa.String(length=255), nullable=False, comment='Owner of the file'),
        sa.Column('storage_path', sa.String(length=512), nullable=False,
                  comment='Object path inside the storage bucket'),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'),
                  nullable=False, comment='Upload timestamp'),
        sa.Column('reformatted', sa.Boolean(), server_default=sa.text('false'), nullable=False,
                  comment='Columns have been normalised'),
        sa.Column('reformatted_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('has_account_type', sa.Boolean(), nullable=True,
                  comment='Source layout already had an account type column'),
        sa.Column('processed_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True,
                  comment='Classification rows: [account type, primary, secondary, tertiary]'),
        sa.Column('processed_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('last_modified', sa.TIMESTAMP(), nullable=True),
        sa.Column('excel_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True,
                  comment='Parsed worksheets after the last reformat/process'),
        sa.Column('excel_data_updated_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('is_converted_from_pdf', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('converted_from_file_id', sa.String(length=36), nullable=True,
                  comment='Source PDF for converted workbooks'),
        sa.CheckConstraint("category IN ('excel', 'pdf')", name='files_category_check'),
        sa.ForeignKeyConstraint(['converted_from_file_id'], ['files.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        comment='Uploaded trial balance documents'
    )

    # Create indexes for files
    op.create_index('idx_files_user_created', 'files', ['user_id', 'created_at'])
    op.create_index('idx_files_converted_from', 'files', ['converted_from_file_id'])


def downgrade() -> None:
    # Drop files table and indexes
    op.drop_index('idx_files_converted_from', table_name='files')
    op.drop_index('idx_files_user_created', table_name='files')
    op.drop_table('files')
