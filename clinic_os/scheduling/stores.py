"""Store interfaces the scheduling engine reads from and writes to.

Every call takes the tenant explicitly. Implementations:
:class:`clinic_os.scheduling.memory.InMemorySchedulingStore` and
:class:`clinic_os.core.repository.SqlSchedulingStore`.
"""

import uuid
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date
from typing import Optional

from clinic_os.scheduling.models import (
    Appointment,
    Provider,
    WaitlistEntry,
    WaitlistStatus,
    WaitlistTransition,
)


class ProviderDirectory(ABC):
    """Read-only view of a tenant's providers."""

    @abstractmethod
    async def list_active_providers(self, tenant_id: uuid.UUID) -> list[Provider]:
        """Active providers of the tenant."""
        pass


class AppointmentStore(ABC):
    """Booked intervals per provider."""

    @abstractmethod
    async def list_appointments(
        self,
        tenant_id: uuid.UUID,
        date_range: tuple[date, date],
        provider_id: Optional[uuid.UUID] = None,
    ) -> list[Appointment]:
        """Appointments touching the inclusive *date_range*, any status."""
        pass

    @abstractmethod
    async def insert_appointment_if_no_conflict(self, appointment: Appointment) -> Appointment:
        """Insert unless a non-cancelled appointment of the same provider overlaps.

        Raises:
            ConflictError: if an overlapping appointment exists.
        """
        pass


class WaitlistStore(ABC):
    """Waiting-list entries and their status transitions."""

    @abstractmethod
    async def get_entry(self, tenant_id: uuid.UUID, entry_id: uuid.UUID) -> Optional[WaitlistEntry]:
        pass

    @abstractmethod
    async def list_entries(
        self,
        tenant_id: uuid.UUID,
        status: Optional[WaitlistStatus] = None,
    ) -> list[WaitlistEntry]:
        pass

    @abstractmethod
    async def set_status(
        self,
        tenant_id: uuid.UUID,
        entry_id: uuid.UUID,
        expected: WaitlistStatus,
        transition: WaitlistTransition,
    ) -> WaitlistEntry:
        """Apply *transition* only if the entry is currently *expected*.

        Raises:
            StaleStatusError: if the entry is missing or in another status.
        """
        pass


class SchedulingStore(ProviderDirectory, AppointmentStore, WaitlistStore):
    """All collaborators the engine needs, plus a unit of work."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Context in which writes commit together or not at all."""
        pass
