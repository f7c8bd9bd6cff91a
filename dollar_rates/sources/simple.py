"""Sources reachable with a single plain request (Banreservas HTML, BHD JSON API)."""

from dollar_rates.acquisition import AcquisitionAttempt
from dollar_rates.sources.base import SourceStrategy


class SimpleSource(SourceStrategy):
    """One request, one parse attempt, no retries."""

    def attempts(self) -> list[AcquisitionAttempt]:
        return [AcquisitionAttempt(name="direct", fetch=self._fetch_direct)]

    async def _fetch_direct(self) -> str:
        response = await self.client.get(self.source.endpoint, profile=self.source.profile)
        return response.text
