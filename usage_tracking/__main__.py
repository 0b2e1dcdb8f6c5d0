from usage_tracking.server import main

main()
