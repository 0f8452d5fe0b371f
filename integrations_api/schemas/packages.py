from uuid import UUID

from pydantic import BaseModel, Field


class PackageOut(BaseModel):
    id: str
    registry: str
    name: str
    version: str
    downloads: int

    def cursor(self) -> str:
        return self.id


class PackageOutput(BaseModel):
    """Scrape artifact stored at ``outputs/{package_name}.json``."""

    id: UUID
    registry: str
    name: str
    version: str
    downloads: int = Field(ge=0)
