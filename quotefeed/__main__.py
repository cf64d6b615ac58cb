from quotefeed.cli.main import main

raise SystemExit(main())
