"""Run the directory server over stdio: python -m slack_directory_mcp"""


def main() -> None:
    # Deferred so that importing the package does not register tools
    from slack_directory_mcp.server import mcp

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
