"""QR code engine: medicines, stock batches, code masters, sequences, codes, scan logs

Revision ID: 20261018_qr_engine
Revises:
Create Date: 2026-10-18

This migration adds:
1. Medicine (carries the four code identity fields) and MedicineStock (batch,
   package type for bulk codes)
2. QRCodeMaster (registered identities, unique on the five codes)
3. QRCodeSequence (per year/month/identity counter with stored regime)
4. QRCodeData (generated codes, unique code string)
5. QRCodeScanLog (append-only scan audit trail)

package_type_code is NOT NULL with '' for unit scopes so the unique
constraints hold on every backend.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_qr_engine'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. MEDICINES / STOCK
    # ==========================================================================
    op.create_table('medicines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('unit', sa.String(length=32), nullable=False),
        sa.Column('active_ingredient', sa.Text(), nullable=True),
        sa.Column('producer', sa.String(length=255), nullable=True),
        sa.Column('funding_source_code', sa.String(length=1), nullable=False),
        sa.Column('medicine_type_code', sa.String(length=1), nullable=False),
        sa.Column('active_ingredient_code', sa.String(length=3), nullable=False),
        sa.Column('producer_code', sa.String(length=1), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('medicines', schema=None) as batch_op:
        batch_op.create_index('ix_medicines_code_identity', ['funding_source_code', 'medicine_type_code', 'active_ingredient_code', 'producer_code'], unique=False)

    op.create_table('medicine_stocks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('medicine_id', sa.Integer(), nullable=False),
        sa.Column('batch_number', sa.String(length=64), nullable=True),
        sa.Column('package_type_code', sa.String(length=1), nullable=True),
        sa.Column('current_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('entry_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expiry_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['medicine_id'], ['medicines.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('medicine_stocks', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_medicine_stocks_medicine_id'), ['medicine_id'], unique=False)
        batch_op.create_index('ix_medicine_stocks_medicine_expiry', ['medicine_id', 'expiry_date'], unique=False)

    # ==========================================================================
    # 2. QR CODE MASTERS
    # ==========================================================================
    op.create_table('qr_code_masters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('funding_source_code', sa.String(length=1), nullable=False),
        sa.Column('funding_source_name', sa.String(length=100), nullable=False),
        sa.Column('medicine_type_code', sa.String(length=1), nullable=False),
        sa.Column('medicine_type_name', sa.String(length=100), nullable=False),
        sa.Column('active_ingredient_code', sa.String(length=3), nullable=False),
        sa.Column('active_ingredient_name', sa.String(length=200), nullable=False),
        sa.Column('producer_code', sa.String(length=1), nullable=False),
        sa.Column('producer_name', sa.String(length=100), nullable=False),
        sa.Column('package_type_code', sa.String(length=1), nullable=False, server_default=''),
        sa.Column('package_type_name', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('funding_source_code', 'medicine_type_code', 'active_ingredient_code', 'producer_code', 'package_type_code', name='uq_qr_code_masters_identity'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('qr_code_masters', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_qr_code_masters_funding_source_code'), ['funding_source_code'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_code_masters_medicine_type_code'), ['medicine_type_code'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_code_masters_active_ingredient_code'), ['active_ingredient_code'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_code_masters_producer_code'), ['producer_code'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_code_masters_status'), ['status'], unique=False)

    # ==========================================================================
    # 3. QR CODE SEQUENCES
    # ==========================================================================
    op.create_table('qr_code_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('year', sa.String(length=2), nullable=False),
        sa.Column('month', sa.String(length=2), nullable=False),
        sa.Column('funding_source_code', sa.String(length=1), nullable=False),
        sa.Column('medicine_type_code', sa.String(length=1), nullable=False),
        sa.Column('active_ingredient_code', sa.String(length=3), nullable=False),
        sa.Column('producer_code', sa.String(length=1), nullable=False),
        sa.Column('package_type_code', sa.String(length=1), nullable=False, server_default=''),
        sa.Column('current_sequence', sa.String(length=4), nullable=False, server_default='0000'),
        sa.Column('regime', sa.String(length=16), nullable=False, server_default='numeric'),
        sa.Column('total_generated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_generated', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('year', 'month', 'funding_source_code', 'medicine_type_code', 'active_ingredient_code', 'producer_code', 'package_type_code', name='uq_qr_code_sequences_scope'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('qr_code_sequences', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_qr_code_sequences_status'), ['status'], unique=False)

    # ==========================================================================
    # 4. GENERATED QR CODES
    # ==========================================================================
    op.create_table('qr_code_data',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('qr_code_string', sa.String(length=32), nullable=False),
        sa.Column('qr_code_image', sa.Text(), nullable=True),
        sa.Column('medicine_stock_id', sa.Integer(), nullable=True),
        sa.Column('is_bulk_package', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('components', sa.JSON(), nullable=False),
        sa.Column('batch_info', sa.JSON(), nullable=True),
        sa.Column('generated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('generated_by', sa.String(length=64), nullable=False),
        sa.Column('printed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('printed_by', sa.String(length=64), nullable=True),
        sa.Column('scanned_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_scanned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_scanned_by', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='GENERATED'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['medicine_stock_id'], ['medicine_stocks.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('qr_code_data', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_qr_code_data_qr_code_string'), ['qr_code_string'], unique=True)
        batch_op.create_index(batch_op.f('ix_qr_code_data_medicine_stock_id'), ['medicine_stock_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_code_data_generated_at'), ['generated_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_code_data_generated_by'), ['generated_by'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_code_data_status'), ['status'], unique=False)
        batch_op.create_index('ix_qr_code_data_stock_status', ['medicine_stock_id', 'status'], unique=False)

    # ==========================================================================
    # 5. SCAN LOGS (append-only)
    # ==========================================================================
    op.create_table('qr_code_scan_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('qr_code_id', sa.Integer(), nullable=True),
        sa.Column('qr_code_string', sa.Text(), nullable=False),
        sa.Column('scanned_by', sa.String(length=64), nullable=False),
        sa.Column('scanned_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('purpose', sa.String(length=32), nullable=False),
        sa.Column('result', sa.String(length=32), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('device_info', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['qr_code_id'], ['qr_code_data.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('qr_code_scan_logs', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_qr_code_scan_logs_qr_code_id'), ['qr_code_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_code_scan_logs_qr_code_string'), ['qr_code_string'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_code_scan_logs_scanned_by'), ['scanned_by'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_code_scan_logs_scanned_at'), ['scanned_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_code_scan_logs_purpose'), ['purpose'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_code_scan_logs_result'), ['result'], unique=False)
        batch_op.create_index('ix_qr_code_scan_logs_code_scanned', ['qr_code_id', 'scanned_at'], unique=False)


def downgrade():
    op.drop_table('qr_code_scan_logs')
    op.drop_table('qr_code_data')
    op.drop_table('qr_code_sequences')
    op.drop_table('qr_code_masters')
    op.drop_table('medicine_stocks')
    op.drop_table('medicines')
