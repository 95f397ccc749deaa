"""initial schema

Revision ID: 1
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1'
down_revision = None
branch_labels = None
depends_on = None

identity_role = sa.Enum('PATIENT', 'DOCTOR', 'PHARMACY', 'LAB', 'ADMIN', name='identity_role')
appointment_status = sa.Enum('PENDING', 'CONFIRMED', 'COMPLETED', 'CANCELLED', name='appointment_status')
lab_request_status = sa.Enum('PENDING', 'COMPLETED', name='lab_request_status')


def _catalog_table(name):
    op.create_table(
        name,
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False, unique=True),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(f'ix_{name}_id', name, ['id'])


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('role', identity_role, nullable=False),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('age', sa.Integer(), nullable=True),
        sa.Column('sex', sa.String(20), nullable=True),
        sa.Column('display_id', sa.String(40), nullable=True, unique=True),
        sa.Column('passcode_hash', sa.String(255), nullable=True),
        sa.Column('specialization', sa.String(120), nullable=True),
        sa.Column('start_hour', sa.Integer(), nullable=True),
        sa.Column('end_hour', sa.Integer(), nullable=True),
        sa.Column('is_super_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('idx_users_role', 'users', ['role'])
    op.create_index(
        'uq_users_patient_phone', 'users', ['phone'], unique=True,
        postgresql_where=sa.text("role = 'PATIENT'"),
        sqlite_where=sa.text("role = 'PATIENT'"),
    )

    _catalog_table('medicines')
    _catalog_table('lab_tests')

    op.create_table(
        'appointments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('patient_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('doctor_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('slot_time', sa.String(60), nullable=True),
        sa.Column('token_number', sa.Integer(), nullable=True),
        sa.Column('status', appointment_status, nullable=False),
        sa.Column('patient_name', sa.String(120), nullable=True),
        sa.Column('patient_age', sa.Integer(), nullable=True),
        sa.Column('patient_gender', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_appointments_id', 'appointments', ['id'])
    op.create_index('ix_appointments_status', 'appointments', ['status'])
    op.create_index('idx_appointments_doctor_date', 'appointments', ['doctor_id', 'date'])
    op.create_index('idx_appointments_patient', 'appointments', ['patient_id'])
    op.create_index(
        'uq_appointments_slot_token', 'appointments',
        ['doctor_id', 'date', 'slot_time', 'token_number'], unique=True,
        postgresql_where=sa.text("status != 'CANCELLED'"),
        sqlite_where=sa.text("status != 'CANCELLED'"),
    )

    op.create_table(
        'consultations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('appointment_id', sa.Integer(), sa.ForeignKey('appointments.id'), nullable=False, unique=True),
        sa.Column('diagnosis', sa.Text(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('next_visit_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_consultations_id', 'consultations', ['id'])

    op.create_table(
        'prescriptions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('consultation_id', sa.Integer(), sa.ForeignKey('consultations.id'), nullable=False),
        sa.Column('is_dispensed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('dispensed_by_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('dispensed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_prescriptions_id', 'prescriptions', ['id'])
    op.create_index('idx_prescriptions_dispensed', 'prescriptions', ['is_dispensed', 'created_at'])

    op.create_table(
        'prescription_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('prescription_id', sa.Integer(), sa.ForeignKey('prescriptions.id'), nullable=False),
        sa.Column('medicine_id', sa.Integer(), sa.ForeignKey('medicines.id'), nullable=False),
        sa.Column('dosage', sa.String(100), nullable=True),
        sa.Column('duration', sa.String(100), nullable=True),
    )
    op.create_index('ix_prescription_items_id', 'prescription_items', ['id'])

    op.create_table(
        'lab_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('consultation_id', sa.Integer(), sa.ForeignKey('consultations.id'), nullable=False),
        sa.Column('lab_test_id', sa.Integer(), sa.ForeignKey('lab_tests.id'), nullable=True),
        sa.Column('test_name', sa.String(255), nullable=False),
        sa.Column('status', lab_request_status, nullable=False),
        sa.Column('result_report', sa.Text(), nullable=True),
        sa.Column('technician_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_lab_requests_id', 'lab_requests', ['id'])
    op.create_index('idx_lab_requests_status', 'lab_requests', ['status', 'created_at'])

    op.create_table(
        'otps',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('phone', sa.String(20), nullable=False, unique=True),
        sa.Column('code', sa.String(10), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_otps_id', 'otps', ['id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('actor_role', sa.String(20), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('severity', sa.String(20), nullable=True),
        sa.Column('resource_type', sa.String(50), nullable=True),
        sa.Column('resource_id', sa.Integer(), nullable=True),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_id', 'audit_logs', ['id'])
    op.create_index('idx_audit_logs_timestamp', 'audit_logs', ['timestamp'])


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('otps')
    op.drop_table('lab_requests')
    op.drop_table('prescription_items')
    op.drop_table('prescriptions')
    op.drop_table('consultations')
    op.drop_table('appointments')
    op.drop_table('lab_tests')
    op.drop_table('medicines')
    op.drop_table('users')
    lab_request_status.drop(op.get_bind(), checkfirst=True)
    appointment_status.drop(op.get_bind(), checkfirst=True)
    identity_role.drop(op.get_bind(), checkfirst=True)
