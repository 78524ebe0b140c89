"""Interface for vision resolvers."""

from abc import ABC, abstractmethod

from .models import ActionRequest, ActionResponse, AssertRequest, AssertResponse, FindRequest, FindResponse


class VisionBackend(ABC):
    """Locates elements, proposes actions and checks assertions from screenshots."""

    name = "vision"

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        pass

    @abstractmethod
    def is_available(self) -> bool:
        pass

    @abstractmethod
    async def find_element(self, request: FindRequest) -> FindResponse:
        pass

    @abstractmethod
    async def get_next_action(self, request: ActionRequest) -> ActionResponse:
        pass

    @abstractmethod
    async def assert_visual(self, request: AssertRequest) -> AssertResponse:
        pass
