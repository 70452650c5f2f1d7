"""create crm tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "equipes",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("nom", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("nom_complet", sa.Text(), nullable=False),
        sa.Column("equipe_id", sa.String(length=36), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="conseiller"),
        sa.Column("statut", sa.String(length=32), nullable=False, server_default="actif"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["equipe_id"], ["equipes.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_equipe_id", "users", ["equipe_id"], unique=False)

    op.create_table(
        "contacts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("nom", sa.Text(), nullable=False),
        sa.Column("prenom", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("telephone", sa.Text(), nullable=True),
        sa.Column("statut_lead", sa.String(length=32), nullable=False, server_default="Nouveau"),
        sa.Column("source", sa.Text(), nullable=True),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("collaborateur_en_charge", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["collaborateur_en_charge"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contacts_collaborateur_en_charge", "contacts", ["collaborateur_en_charge"], unique=False)

    op.create_table(
        "propositions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("contact_id", sa.String(length=36), nullable=False),
        sa.Column("conseiller_id", sa.String(length=36), nullable=False),
        sa.Column("produit", sa.Text(), nullable=True),
        sa.Column("compagnie", sa.Text(), nullable=True),
        sa.Column("montant_mensuel", sa.Numeric(12, 2), nullable=True),
        sa.Column("statut", sa.String(length=32), nullable=False, server_default="brouillon"),
        sa.Column("date_proposition", sa.Date(), nullable=True),
        sa.Column("date_echeance", sa.Date(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["conseiller_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_propositions_conseiller_id", "propositions", ["conseiller_id"], unique=False)
    op.create_index("ix_propositions_contact_id", "propositions", ["contact_id"], unique=False)

    op.create_table(
        "contrats",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("numero_contrat", sa.String(length=64), nullable=False),
        sa.Column("compagnie", sa.Text(), nullable=True),
        sa.Column("cotisation_mensuelle", sa.Numeric(12, 2), nullable=False),
        sa.Column("date_signature", sa.Date(), nullable=True),
        sa.Column("contact_client_id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["contact_client_id"], ["contacts.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("numero_contrat"),
    )
    op.create_index("ix_contrats_contact_client_id", "contrats", ["contact_client_id"], unique=False)

    op.create_table(
        "taches",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("titre", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("statut", sa.String(length=32), nullable=False, server_default="a_faire"),
        sa.Column("priorite", sa.String(length=32), nullable=False, server_default="normale"),
        sa.Column("date_echeance", sa.Date(), nullable=True),
        sa.Column("date_completion", sa.DateTime(timezone=True), nullable=True),
        sa.Column("contact_id", sa.String(length=36), nullable=True),
        sa.Column("assigne_a", sa.String(length=36), nullable=False),
        sa.Column("cree_par", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["assigne_a"], ["users.id"]),
        sa.ForeignKeyConstraint(["cree_par"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_taches_assigne_a", "taches", ["assigne_a"], unique=False)
    op.create_index("ix_taches_cree_par", "taches", ["cree_par"], unique=False)

    op.create_table(
        "objectifs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("nom", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("valeur_cible", sa.Numeric(14, 2), nullable=False),
        sa.Column("valeur_actuelle", sa.Numeric(14, 2), nullable=False),
        sa.Column("periode_debut", sa.Date(), nullable=False),
        sa.Column("periode_fin", sa.Date(), nullable=False),
        sa.Column("assigne_a", sa.String(length=36), nullable=True),
        sa.Column("equipe_id", sa.String(length=36), nullable=True),
        sa.Column("cree_par", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["assigne_a"], ["users.id"]),
        sa.ForeignKeyConstraint(["equipe_id"], ["equipes.id"]),
        sa.ForeignKeyConstraint(["cree_par"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "campagnes",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("nom", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("statut", sa.String(length=32), nullable=False, server_default="brouillon"),
        sa.Column("date_debut", sa.Date(), nullable=True),
        sa.Column("date_fin", sa.Date(), nullable=True),
        sa.Column("declencheur", sa.JSON(), nullable=False),
        sa.Column("etapes", sa.JSON(), nullable=False),
        sa.Column("cree_par", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["cree_par"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("campagnes")
    op.drop_table("objectifs")
    op.drop_index("ix_taches_cree_par", table_name="taches")
    op.drop_index("ix_taches_assigne_a", table_name="taches")
    op.drop_table("taches")
    op.drop_index("ix_contrats_contact_client_id", table_name="contrats")
    op.drop_table("contrats")
    op.drop_index("ix_propositions_contact_id", table_name="propositions")
    op.drop_index("ix_propositions_conseiller_id", table_name="propositions")
    op.drop_table("propositions")
    op.drop_index("ix_contacts_collaborateur_en_charge", table_name="contacts")
    op.drop_table("contacts")
    op.drop_index("ix_users_equipe_id", table_name="users")
    op.drop_table("users")
    op.drop_table("equipes")
