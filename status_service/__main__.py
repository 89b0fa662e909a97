from status_service.main import main

raise SystemExit(main())
