"""Browser tools, forwarded to the extension through the RemoteCommandBridge."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import ConfigDict, Field

from nimbus.tools.base import Handler, NoInput, ToolContext, ToolInput, ToolName

NOT_CONNECTED = (
    "Browser extension not connected. Please install and connect the Chrome extension."
)


class BrowserInput(ToolInput):
    """Browser inputs keep the extension's camelCase keys on the wire."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class NavigateInput(BrowserInput):
    url: str = Field(description="URL to navigate to")
    new_tab: bool = Field(False, alias="newTab", description="Open in a new tab")


class ClickInput(BrowserInput):
    selector: str | None = Field(None, description="CSS selector of the element to click")
    text: str | None = Field(None, description="Visible text of the element to click")
    x: float | None = Field(None, description="X coordinate to click")
    y: float | None = Field(None, description="Y coordinate to click")


class TypeInput(BrowserInput):
    text: str = Field(description="Text to type")
    selector: str | None = Field(None, description="CSS selector of the input element")
    clear: bool = Field(False, description="Clear the field before typing")


class ReadInput(BrowserInput):
    selector: str | None = Field(None, description="CSS selector to read (default: body)")
    format: Literal["text", "html", "markdown"] = Field("text", description="Output format")


class ScreenshotInput(BrowserInput):
    full_page: bool = Field(False, alias="fullPage", description="Capture the full page")


class ScrollInput(BrowserInput):
    direction: Literal["up", "down"] = Field(description="Scroll direction")
    amount: int = Field(500, description="Pixels to scroll")
    selector: str | None = Field(None, description="Element to scroll (default: page)")


class SwitchTabInput(BrowserInput):
    tab_id: int = Field(alias="tabId", description="Tab id from BrowserGetTabs")


class FillFormInput(BrowserInput):
    fields: dict[str, str] = Field(description="Mapping of CSS selector to value")


class GetElementsInput(BrowserInput):
    selector: str = Field(description="CSS selector to match")
    limit: int = Field(10, ge=1, description="Maximum elements to return")


class BrowserHandler(Handler[Any]):
    """Sends one bridge action with the validated input as params."""

    def __init__(
        self, tool: ToolName, action: str, description: str, model: type[ToolInput] = NoInput
    ) -> None:
        self.name = tool  # type: ignore[misc]
        self.action = action
        self.description = f"{description} Requires the browser extension."  # type: ignore[misc]
        self.input_model = model  # type: ignore[misc]

    async def run(self, params: ToolInput, ctx: ToolContext) -> dict[str, Any]:
        if ctx.bridge is None or not ctx.bridge.is_connected():
            return {"error": NOT_CONNECTED}
        payload = params.model_dump(by_alias=True, exclude_none=True)
        return await ctx.bridge.send(self.action, payload)


HANDLERS: list[Handler[Any]] = [
    BrowserHandler(
        ToolName.BROWSER_NAVIGATE, "navigate", "Navigate the browser to a URL.", NavigateInput
    ),
    BrowserHandler(
        ToolName.BROWSER_CLICK, "click", "Click an element by selector, text or position.",
        ClickInput,
    ),
    BrowserHandler(ToolName.BROWSER_TYPE, "type", "Type text into an input field.", TypeInput),
    BrowserHandler(ToolName.BROWSER_READ, "read", "Read content from the current page.", ReadInput),
    BrowserHandler(
        ToolName.BROWSER_SCREENSHOT, "screenshot", "Capture the current tab.", ScreenshotInput
    ),
    BrowserHandler(ToolName.BROWSER_SCROLL, "scroll", "Scroll the page.", ScrollInput),
    BrowserHandler(ToolName.BROWSER_GET_TABS, "getTabs", "List open tabs."),
    BrowserHandler(
        ToolName.BROWSER_SWITCH_TAB, "switchTab", "Switch to a tab by id.", SwitchTabInput
    ),
    BrowserHandler(
        ToolName.BROWSER_FILL_FORM, "fillForm", "Fill several form fields at once.", FillFormInput
    ),
    BrowserHandler(
        ToolName.BROWSER_GET_ELEMENTS,
        "getElements",
        "Describe elements matching a selector.",
        GetElementsInput,
    ),
]
