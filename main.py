import sys


def main(workflow_name: str, argv):
    """Dispatch to a workflow module; each one owns its DB setup and argument parsing."""
    if workflow_name == "sync":
        from workflows.channel_sync import main as workflow_main
    elif workflow_name == "scheduler":
        from workflows.channel_scheduler import main as workflow_main
    else:
        print(f"Unknown workflow: {workflow_name}")
        sys.exit(1)
    sys.argv = [f"main.py {workflow_name}", *argv]
    workflow_main()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python main.py <sync|scheduler> [args...]")
        sys.exit(1)

    main(sys.argv[1], sys.argv[2:])
