from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends, Header, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession

from kitchenflow.database import get_db
from kitchenflow.models.employee import Employee
from kitchenflow.services.change_feed import ChangeFeedBackend


logger = logging.getLogger(__name__)


def get_change_feed(request: Request) -> Optional[ChangeFeedBackend]:
    """The application's change feed, created in the lifespan handler."""
    return getattr(request.app.state, "change_feed", None)


async def get_current_employee(
    db: Annotated[AsyncSession, Depends(get_db)],
    x_employee_id: Annotated[Optional[str], Header(alias="X-Employee-Id")] = None,
) -> Employee:
    """
    Dependency to get the employee performing the action.

    Identity is just a named, active employee sent in the X-Employee-Id header;
    there is no session or token.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="X-Employee-Id header with an active employee id is required",
    )

    if not x_employee_id:
        raise credentials_exception

    try:
        employee_uuid = uuid.UUID(x_employee_id)
    except ValueError:
        logger.warning(f"Invalid employee id in header: {x_employee_id}")
        raise credentials_exception

    employee = await db.get(Employee, employee_uuid)
    if employee is None:
        logger.warning(f"Employee {x_employee_id} not found")
        raise credentials_exception

    if not employee.active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Employee is deactivated"
        )

    return employee


# Type aliases for cleaner dependency injection
CurrentEmployee = Annotated[Employee, Depends(get_current_employee)]
DB = Annotated[AsyncSession, Depends(get_db)]
ChangeFeed = Annotated[Optional[ChangeFeedBackend], Depends(get_change_feed)]
