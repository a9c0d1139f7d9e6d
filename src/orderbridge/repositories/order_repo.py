"""Order and customer repositories."""

from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.db.models.order import CustomerRow, OrderRow
from orderbridge.repositories.base import BaseRepository


class OrderRepository(BaseRepository):
    pk_field = "order_id"

    def __init__(self, session: AsyncSession):
        super().__init__(session, OrderRow)

    async def find_by_reference(
        self,
        owner_id: str,
        order_number: str | None,
        external_id: str | None = None,
        for_update: bool = False,
    ) -> OrderRow | None:
        """Look up an order by its number or the platform's external id."""
        clauses = []
        if order_number:
            clauses.append(OrderRow.order_number == order_number)
        if external_id:
            clauses.append(OrderRow.external_id == external_id)
        if not clauses:
            return None
        stmt = self._owned(owner_id).where(or_(*clauses)).limit(1)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class CustomerRepository(BaseRepository):
    pk_field = "customer_id"

    def __init__(self, session: AsyncSession):
        super().__init__(session, CustomerRow)

    async def get_by_email(self, owner_id: str, email: str) -> CustomerRow | None:
        stmt = self._owned(owner_id).where(CustomerRow.email == email.strip().lower())
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
