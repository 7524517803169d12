"""Lead store module -- SQLAlchemy models, schemas, and repositories for platform leads.

Provides LeadModel / FormModel (tenant schema), lead payload schemas with
explicit sync edges, the LeadStore / FormCatalog interfaces, and their async
SQLAlchemy implementations.
"""
