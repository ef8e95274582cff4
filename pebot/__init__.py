"""PE-Bot: Slack bridge to an Azure OpenAI assistant with Confluence tools."""
